"""
Admin Trip API Endpoints.

Overrides, reminders, escalation of expired approvals and the overdue-approval sweep.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from tripshare.app.core.dependencies import get_approval_service, get_store
from tripshare.app.core.guards import require_admin
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.models.trip_enums import TripStatus
from tripshare.app.models.user import User
from tripshare.app.schemas.trip import (
    AdminOverride, EscalationRequest, ExpirySweepResponse,
    TripDetailResponse, TripListResponse, TripResponse
)
from tripshare.app.services.trip_store import TripStore

router = APIRouter(prefix="/admin/trips", tags=["Admin - Trips"])


@router.get("", response_model=TripListResponse)
async def list_trips(
    status_filter: Optional[TripStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(require_admin),
    store: TripStore = Depends(get_store),
):
    """List all trips (Admin only)."""
    trips = await store.list_trips(statuses=[status_filter] if status_filter else None, limit=limit)
    return TripListResponse(trips=[TripResponse.model_validate(t) for t in trips], total=len(trips))


@router.post("/expire-overdue", response_model=ExpirySweepResponse)
async def expire_overdue_approvals(
    current_user: User = Depends(require_admin),
    service: ApprovalService = Depends(get_approval_service),
):
    """Expire pending trips whose approval deadline has passed. Safe to repeat."""
    expired = await service.expire_overdue()
    return ExpirySweepResponse(expired_count=len(expired), trip_ids=[t.id for t in expired])


@router.post("/{trip_id}/override", response_model=TripDetailResponse)
async def override_approval(
    override: AdminOverride,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: User = Depends(require_admin),
    service: ApprovalService = Depends(get_approval_service),
):
    """
    Force approval of a pending or expired trip (Admin only).

    The reason is mandatory and written to the audit log.
    """
    trip = await service.admin_override(trip_id, override.reason, current_user, solo=override.solo)
    return TripDetailResponse.from_trip(trip)


@router.post("/{trip_id}/escalate", response_model=TripDetailResponse)
async def escalate_approval(
    request: EscalationRequest,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: User = Depends(require_admin),
    service: ApprovalService = Depends(get_approval_service),
):
    """Send an expired approval to another approver (Admin only)."""
    trip = await service.escalate(trip_id, request.approver_email, current_user)
    return TripDetailResponse.from_trip(trip)


@router.post("/{trip_id}/remind", response_model=TripDetailResponse)
async def send_approval_reminder(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: User = Depends(require_admin),
    service: ApprovalService = Depends(get_approval_service),
):
    """Re-send the approval email for a trip still awaiting a decision (Admin only)."""
    trip = await service.send_reminder(trip_id, current_user)
    return TripDetailResponse.from_trip(trip)
