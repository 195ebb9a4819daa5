"""
Join request database model.

A rider asks to attach to an already booked trip.
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Text, Index
from tripshare.app.core.clock import utcnow
from tripshare.app.db.session import Base


class JoinRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_JOIN_STATUSES = (
    JoinRequestStatus.APPROVED,
    JoinRequestStatus.REJECTED,
    JoinRequestStatus.CANCELLED,
)


class JoinRequest(Base):
    """
    Join request model.

    Only one pending request may exist per (trip, requester); the partial
    unique index enforces it at the database level.
    """
    __tablename__ = "join_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=False, index=True)
    requester_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    requester_email = Column(String(255), nullable=False)
    requester_name = Column(String(150), nullable=False)
    requester_department = Column(String(100), nullable=True)

    # Copied from the requester so admin emails can CC their manager
    manager_email = Column(String(255), nullable=True)
    manager_name = Column(String(150), nullable=True)

    reason = Column(Text, nullable=True)
    status = Column(Enum(JoinRequestStatus), default=JoinRequestStatus.PENDING, nullable=False, index=True)
    admin_notes = Column(Text, nullable=True)
    processed_by = Column(String(255), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_trip_id = Column(Integer, ForeignKey('trips.id'), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index(
            'ix_join_requests_one_pending', 'trip_id', 'requester_id', unique=True,
            postgresql_where=Column('status') == 'PENDING',
            sqlite_where=Column('status') == 'PENDING',
        ),
    )

    def __repr__(self):
        return f"<JoinRequest(id={self.id}, trip_id={self.trip_id}, status='{self.status.value}')>"
