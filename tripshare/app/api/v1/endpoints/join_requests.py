"""
Join Request API Endpoints.

Riders ask for a seat on a booked trip; administrators decide.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from tripshare.app.core.dependencies import get_current_user, get_join_request_service
from tripshare.app.core.guards import require_admin
from tripshare.app.domain.join_requests.join_request_service import JoinRequestService
from tripshare.app.models.join_request import JoinRequestStatus
from tripshare.app.models.user import User
from tripshare.app.schemas.join_request import (
    JoinRequestCreate, JoinRequestDecision, JoinRequestListResponse,
    JoinRequestPurgeResponse, JoinRequestResponse, JoinRequestStats
)

router = APIRouter(tags=["Join Requests"])
admin_router = APIRouter(prefix="/admin/join-requests", tags=["Admin - Join Requests"])


def _as_list(requests) -> JoinRequestListResponse:
    return JoinRequestListResponse(
        requests=[JoinRequestResponse.model_validate(r) for r in requests],
        total=len(requests),
    )


@router.post("/trips/{trip_id}/join-requests", response_model=JoinRequestResponse,
             status_code=status.HTTP_201_CREATED)
async def request_to_join(
    body: JoinRequestCreate,
    trip_id: int = Path(..., description="Trip to join"),
    current_user: User = Depends(get_current_user),
    service: JoinRequestService = Depends(get_join_request_service),
):
    """
    Ask for a seat on a booked trip.

    Returns 409 for a duplicate request, a same-day booking, an existing
    membership or a full vehicle.
    """
    request = await service.request_join(trip_id, current_user, body.reason)
    return JoinRequestResponse.model_validate(request)


@router.get("/join-requests", response_model=JoinRequestListResponse)
async def list_my_join_requests(
    status_filter: Optional[JoinRequestStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    service: JoinRequestService = Depends(get_join_request_service),
):
    """List the caller's own join requests."""
    return _as_list(await service.list_join_requests(current_user, status=status_filter))


@router.post("/join-requests/{request_id}/cancel", response_model=JoinRequestResponse)
async def cancel_join_request(
    request_id: int = Path(..., description="Join request ID"),
    current_user: User = Depends(get_current_user),
    service: JoinRequestService = Depends(get_join_request_service),
):
    request = await service.cancel_join_request(request_id, current_user)
    return JoinRequestResponse.model_validate(request)


@admin_router.get("", response_model=JoinRequestListResponse)
async def list_join_requests(
    status_filter: Optional[JoinRequestStatus] = Query(None, alias="status"),
    trip_id: Optional[int] = Query(None),
    current_user: User = Depends(require_admin),
    service: JoinRequestService = Depends(get_join_request_service),
):
    """List all join requests (Admin only)."""
    return _as_list(await service.list_join_requests(
        current_user, status=status_filter, trip_id=trip_id, include_all=True
    ))


@admin_router.get("/stats", response_model=JoinRequestStats)
async def join_request_stats(
    current_user: User = Depends(require_admin),
    service: JoinRequestService = Depends(get_join_request_service),
):
    return JoinRequestStats(**await service.join_request_stats())


@admin_router.delete("", response_model=JoinRequestPurgeResponse)
async def purge_join_requests(
    older_than_days: int = Query(90, ge=1, description="Delete decided requests older than this"),
    current_user: User = Depends(require_admin),
    service: JoinRequestService = Depends(get_join_request_service),
):
    """Delete decided join requests. Pending requests are kept."""
    deleted = await service.purge_join_requests(current_user, older_than_days)
    return JoinRequestPurgeResponse(deleted=deleted, older_than_days=older_than_days)


@admin_router.post("/{request_id}/approve", response_model=JoinRequestResponse)
async def approve_join_request(
    decision: JoinRequestDecision,
    request_id: int = Path(..., description="Join request ID"),
    current_user: User = Depends(require_admin),
    service: JoinRequestService = Depends(get_join_request_service),
):
    """Approve a pending request; a trip is opened for the rider."""
    request = await service.approve_join_request(request_id, current_user, decision.notes)
    return JoinRequestResponse.model_validate(request)


@admin_router.post("/{request_id}/reject", response_model=JoinRequestResponse)
async def reject_join_request(
    decision: JoinRequestDecision,
    request_id: int = Path(..., description="Join request ID"),
    current_user: User = Depends(require_admin),
    service: JoinRequestService = Depends(get_join_request_service),
):
    request = await service.reject_join_request(request_id, current_user, decision.notes)
    return JoinRequestResponse.model_validate(request)
