"""
Trip schemas.

Schemas for trip submission, manager decisions and administrator actions.
"""

from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

from tripshare.app.domain.approval.status_messages import message_for
from tripshare.app.models.trip_enums import TripStatus, TripDataType, ManagerApprovalStatus, VehicleType


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class TripSubmit(BaseModel):
    """Schema for submitting a trip."""
    origin: str = Field(..., min_length=1, max_length=150)
    destination: str = Field(..., min_length=1, max_length=150)
    departure_at: datetime
    return_at: Optional[datetime] = None
    vehicle_type: VehicleType = VehicleType.CAR_4
    passenger_count: int = Field(1, ge=1, le=15)
    purpose: Optional[str] = Field(None, max_length=1000)
    cc_emails: List[str] = Field(default_factory=list, max_length=10)

    @field_validator("departure_at", "return_at")
    @classmethod
    def normalize_timezone(cls, value):
        return _as_naive_utc(value)


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    requester_id: int
    requester_name: str
    requester_email: str
    origin: str
    destination: str
    departure_at: datetime
    return_at: Optional[datetime]
    original_departure_at: Optional[datetime]
    status: TripStatus
    data_type: TripDataType
    is_urgent: bool
    vehicle_type: VehicleType
    passenger_count: int
    estimated_cost: Optional[float]
    actual_cost: Optional[float]
    optimized_group_id: Optional[int]
    manager_email: Optional[str]
    manager_approval_status: ManagerApprovalStatus
    manager_approval_expires_at: Optional[datetime]
    manager_approved_by: Optional[str]
    rejection_reason: Optional[str]
    override_reason: Optional[str]
    escalated_to: Optional[str]
    purpose: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TripDetailResponse(BaseModel):
    """Trip plus the display text for its status."""
    trip: TripResponse
    status_label: str
    status_message: str

    @classmethod
    def from_trip(cls, trip) -> "TripDetailResponse":
        text = message_for(trip.status)
        return cls(
            trip=TripResponse.model_validate(trip),
            status_label=text.label,
            status_message=text.user_message,
        )


class TripListResponse(BaseModel):
    """Schema for trip list."""
    trips: List[TripResponse]
    total: int


class ManagerDecision(BaseModel):
    """Schema for acting on an approval link."""
    token: str = Field(..., min_length=1)


class ManagerRejection(ManagerDecision):
    reason: str = Field(..., min_length=1, max_length=500, description="Reason for rejection")


class ApprovalLinkPreview(BaseModel):
    """What the manager sees before deciding."""
    outcome: str
    action: str
    trip: TripResponse


class AdminOverride(BaseModel):
    """Schema for forcing an approval."""
    reason: str = Field(..., min_length=1, max_length=500, description="Reason for override (audited)")
    solo: bool = Field(False, description="Approve for solo travel, excluded from consolidation")


class EscalationRequest(BaseModel):
    """Schema for forwarding an expired approval."""
    approver_email: str = Field(..., min_length=3, max_length=255)


class ExpirySweepResponse(BaseModel):
    expired_count: int
    trip_ids: List[int]
