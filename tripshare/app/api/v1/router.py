"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from tripshare.app.api.v1.endpoints import (
    trips, approvals, admin_trips, optimizations, join_requests, admin_ops
)

router = APIRouter()

# Employees
router.include_router(trips.router)
router.include_router(join_requests.router)

# Manager approval links
router.include_router(approvals.router)

# Administrators
router.include_router(admin_trips.router)
router.include_router(optimizations.router)
router.include_router(join_requests.admin_router)
router.include_router(admin_ops.router)
