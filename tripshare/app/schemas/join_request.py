"""
Join request schemas.
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional

from tripshare.app.models.join_request import JoinRequestStatus


class JoinRequestCreate(BaseModel):
    """Schema for asking to join a trip."""
    reason: Optional[str] = Field(None, max_length=1000)


class JoinRequestDecision(BaseModel):
    """Schema for an administrator's approve/reject note."""
    notes: Optional[str] = Field(None, max_length=1000)


class JoinRequestResponse(BaseModel):
    """Schema for join request response."""
    id: int
    trip_id: int
    requester_id: int
    requester_email: str
    requester_name: str
    requester_department: Optional[str]
    manager_email: Optional[str]
    reason: Optional[str]
    status: JoinRequestStatus
    admin_notes: Optional[str]
    processed_by: Optional[str]
    processed_at: Optional[datetime]
    created_trip_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class JoinRequestListResponse(BaseModel):
    requests: List[JoinRequestResponse]
    total: int


class JoinRequestStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    cancelled: int


class JoinRequestPurgeResponse(BaseModel):
    deleted: int
    older_than_days: int
