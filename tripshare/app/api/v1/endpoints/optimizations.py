"""
Optimization API Endpoints.

Administrators run the consolidation engine and decide its proposals.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from tripshare.app.core.dependencies import get_proposal_service
from tripshare.app.core.guards import require_admin
from tripshare.app.domain.proposals.lifecycle import ProposalLifecycleService
from tripshare.app.models.optimization_group import GroupStatus
from tripshare.app.models.user import User
from tripshare.app.schemas.optimization import (
    OptimizationGroupResponse, OptimizationProposalResponse, OptimizationRunResponse, ProposalRejection
)

router = APIRouter(prefix="/admin/optimizations", tags=["Admin - Optimizations"])


@router.post("/propose", response_model=OptimizationRunResponse, status_code=status.HTTP_201_CREATED)
async def propose_optimizations(
    current_user: User = Depends(require_admin),
    service: ProposalLifecycleService = Depends(get_proposal_service),
):
    """
    Group approved trips that can share a vehicle and stage the results.

    Nothing changes on the member trips until a proposal is approved.
    """
    result = await service.propose_optimization(current_user)
    return OptimizationRunResponse(
        staged=[OptimizationGroupResponse.model_validate(g) for g in result.staged],
        skipped_count=len(result.skipped),
    )


@router.get("", response_model=List[OptimizationProposalResponse])
async def list_optimizations(
    status_filter: Optional[GroupStatus] = Query(None, alias="status", description="Filter by status"),
    current_user: User = Depends(require_admin),
    service: ProposalLifecycleService = Depends(get_proposal_service),
):
    """List proposals with a preview of each member's new schedule."""
    proposals = await service.list_proposals(status_filter)
    return [OptimizationProposalResponse.build(group, temps) for group, temps in proposals]


@router.get("/{group_id}", response_model=OptimizationProposalResponse)
async def get_optimization(
    group_id: int = Path(..., description="Optimization group ID"),
    current_user: User = Depends(require_admin),
    service: ProposalLifecycleService = Depends(get_proposal_service),
):
    group, temps = await service.get_proposal(group_id)
    return OptimizationProposalResponse.build(group, temps)


@router.post("/{group_id}/approve", response_model=OptimizationGroupResponse)
async def approve_optimization(
    group_id: int = Path(..., description="Optimization group ID"),
    current_user: User = Depends(require_admin),
    service: ProposalLifecycleService = Depends(get_proposal_service),
):
    """Apply a proposal to its member trips. All members change or none do."""
    group = await service.approve_proposal(group_id, current_user)
    return OptimizationGroupResponse.model_validate(group)


@router.post("/{group_id}/reject", response_model=OptimizationGroupResponse)
async def reject_optimization(
    rejection: ProposalRejection,
    group_id: int = Path(..., description="Optimization group ID"),
    current_user: User = Depends(require_admin),
    service: ProposalLifecycleService = Depends(get_proposal_service),
):
    """Discard a proposal; its members continue as solo trips."""
    group = await service.reject_proposal(group_id, current_user, rejection.reason)
    return OptimizationGroupResponse.model_validate(group)
