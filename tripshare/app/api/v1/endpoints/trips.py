"""
Trip API Endpoints.

Employees submit trips, follow their approval status and cancel trips that
are still waiting for a manager.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from tripshare.app.core.dependencies import get_approval_service, get_current_user, get_store
from tripshare.app.core.exceptions import AuthorizationError, NotFoundError
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.models.enums import UserRole
from tripshare.app.models.trip_enums import TripStatus
from tripshare.app.models.user import User
from tripshare.app.schemas.trip import TripDetailResponse, TripListResponse, TripResponse, TripSubmit
from tripshare.app.services.trip_store import TripStore

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.post("", response_model=TripDetailResponse, status_code=status.HTTP_201_CREATED)
async def submit_trip(
    trip_data: TripSubmit,
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """
    Submit a business trip.

    The trip starts pending manager approval (urgent if it departs within a
    day), or auto-approved when the requester has no manager.
    """
    trip = await service.submit_trip(current_user, trip_data)
    return TripDetailResponse.from_trip(trip)


@router.get("", response_model=TripListResponse)
async def list_my_trips(
    status_filter: Optional[TripStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    store: TripStore = Depends(get_store),
):
    """List the caller's own trips, most recent departure first."""
    trips = await store.list_trips(
        requester_id=current_user.id,
        statuses=[status_filter] if status_filter else None,
        limit=limit,
    )
    return TripListResponse(trips=[TripResponse.model_validate(t) for t in trips], total=len(trips))


@router.get("/{trip_id}", response_model=TripDetailResponse)
async def get_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: User = Depends(get_current_user),
    store: TripStore = Depends(get_store),
):
    """Trip details with a status message. Visible to its requester and administrators."""
    trip = await store.get_trip(trip_id)
    if trip is None:
        raise NotFoundError("Trip", trip_id)
    if trip.requester_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise AuthorizationError("You can only view your own trips")
    return TripDetailResponse.from_trip(trip)


@router.post("/{trip_id}/cancel", response_model=TripDetailResponse)
async def cancel_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Cancel a trip that has not been decided yet."""
    trip = await service.cancel_trip(trip_id, current_user)
    return TripDetailResponse.from_trip(trip)
