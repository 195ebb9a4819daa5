"""
Manager Approval API Endpoints.

Targets of the links emailed to managers. The signed token is the only
credential: no session is required.
"""

from fastapi import APIRouter, Depends, Query

from tripshare.app.core.dependencies import get_approval_service
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.schemas.trip import (
    ApprovalLinkPreview, ManagerDecision, ManagerRejection, TripDetailResponse, TripResponse
)

router = APIRouter(prefix="/approvals", tags=["Manager Approvals"])


async def _preview(token: str, service: ApprovalService) -> ApprovalLinkPreview:
    trip, verification = await service.preview_link(token)
    return ApprovalLinkPreview(
        outcome=verification.outcome,
        action=verification.action.value,
        trip=TripResponse.model_validate(trip),
    )


@router.get("/approve", response_model=ApprovalLinkPreview)
async def preview_approval(
    token: str = Query(..., min_length=1),
    service: ApprovalService = Depends(get_approval_service),
):
    """Show the trip behind an approval link without consuming it."""
    return await _preview(token, service)


@router.get("/reject", response_model=ApprovalLinkPreview)
async def preview_rejection(
    token: str = Query(..., min_length=1),
    service: ApprovalService = Depends(get_approval_service),
):
    """Show the trip behind a rejection link without consuming it."""
    return await _preview(token, service)


@router.post("/approve", response_model=TripDetailResponse)
async def approve_trip(
    decision: ManagerDecision,
    service: ApprovalService = Depends(get_approval_service),
):
    """
    Approve a trip with the manager's link token.

    Returns 410 for an expired link and 400 for an invalid or used one.
    """
    trip = await service.approve_by_manager(decision.token)
    return TripDetailResponse.from_trip(trip)


@router.post("/reject", response_model=TripDetailResponse)
async def reject_trip(
    decision: ManagerRejection,
    service: ApprovalService = Depends(get_approval_service),
):
    """Reject a trip with the manager's link token. A reason is required."""
    trip = await service.reject_by_manager(decision.token, decision.reason)
    return TripDetailResponse.from_trip(trip)
