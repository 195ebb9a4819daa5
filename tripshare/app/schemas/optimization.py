"""
Optimization schemas.

Schemas for consolidation proposals and their decisions.
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional

from tripshare.app.models.optimization_group import GroupStatus, ProposalSource
from tripshare.app.models.trip_enums import VehicleType


class ProposedMemberPreview(BaseModel):
    """A member trip as it would look once the proposal is approved."""
    parent_trip_id: int
    requester_name: str
    departure_at: datetime
    original_departure_at: Optional[datetime]
    vehicle_type: VehicleType
    actual_cost: Optional[float]

    class Config:
        from_attributes = True


class OptimizationGroupResponse(BaseModel):
    """Schema for an optimization group."""
    id: int
    trip_ids: List[int]
    proposed_departure_at: datetime
    vehicle_type: VehicleType
    distance_km: float
    baseline_cost: float
    combined_cost: float
    estimated_savings: float
    savings_percentage: float
    source: ProposalSource
    explanation: Optional[str]
    status: GroupStatus
    created_by: Optional[str]
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class OptimizationProposalResponse(BaseModel):
    """Group plus the temp records previewing its effect."""
    group: OptimizationGroupResponse
    members: List[ProposedMemberPreview]

    @classmethod
    def build(cls, group, temps) -> "OptimizationProposalResponse":
        return cls(
            group=OptimizationGroupResponse.model_validate(group),
            members=[ProposedMemberPreview.model_validate(temp) for temp in temps],
        )


class OptimizationRunResponse(BaseModel):
    """Result of one consolidation run."""
    staged: List[OptimizationGroupResponse]
    skipped_count: int


class ProposalRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
