"""
Trip database model.

One row per logical trip (``raw`` or ``final``), plus transient ``temp``
rows that shadow a trip while a consolidation proposal is pending.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum, Text, JSON
from tripshare.app.core.clock import utcnow
from tripshare.app.db.session import Base
from tripshare.app.models.trip_enums import (
    TripStatus, TripDataType, ManagerApprovalStatus, VehicleType
)


class Trip(Base):
    """
    Trip model.

    A trip is submitted by an employee, approved by their manager (or an
    administrator) and may later be merged with other trips on the same
    route into one shared vehicle booking.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership
    requester_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    requester_email = Column(String(255), nullable=False)
    requester_name = Column(String(150), nullable=False)

    # Route and schedule
    origin = Column(String(150), nullable=False)
    destination = Column(String(150), nullable=False)
    departure_at = Column(DateTime, nullable=False, index=True)
    return_at = Column(DateTime, nullable=True)
    original_departure_at = Column(DateTime, nullable=True)
    purpose = Column(Text, nullable=True)
    cc_emails = Column(JSON, nullable=True)

    # Status
    status = Column(Enum(TripStatus), default=TripStatus.PENDING_APPROVAL, nullable=False, index=True)
    data_type = Column(Enum(TripDataType), default=TripDataType.RAW, nullable=False, index=True)
    parent_trip_id = Column(Integer, ForeignKey('trips.id'), nullable=True, index=True)
    is_urgent = Column(Boolean, default=False, nullable=False)

    # Vehicle and cost
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.CAR_4, nullable=False)
    passenger_count = Column(Integer, default=1, nullable=False)
    estimated_cost = Column(Float, nullable=True)
    actual_cost = Column(Float, nullable=True)

    # Consolidation
    optimized_group_id = Column(Integer, ForeignKey('optimization_groups.id'), nullable=True, index=True)
    notified = Column(Boolean, default=False, nullable=False)

    # Manager approval
    manager_email = Column(String(255), nullable=True)
    manager_name = Column(String(150), nullable=True)
    manager_approval_status = Column(
        Enum(ManagerApprovalStatus), default=ManagerApprovalStatus.PENDING, nullable=False
    )
    manager_approval_token = Column(String(64), nullable=True, index=True)  # jti of the live link pair
    manager_approval_expires_at = Column(DateTime, nullable=True, index=True)
    manager_approved_by = Column(String(255), nullable=True)
    manager_approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    override_reason = Column(Text, nullable=True)

    # Escalation
    escalated_to = Column(String(255), nullable=True)
    escalated_at = Column(DateTime, nullable=True)
    expired_notification_sent = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Trip(id={self.id}, {self.origin}->{self.destination}, status='{self.status.value}')>"
