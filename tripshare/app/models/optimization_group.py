"""
Optimization group database model.

A proposed (and later approved or rejected) consolidation of several trips
into one shared vehicle booking.
"""

import enum

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, Text, JSON
from tripshare.app.core.clock import utcnow
from tripshare.app.db.session import Base
from tripshare.app.models.trip_enums import VehicleType


class GroupStatus(str, enum.Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"


class ProposalSource(str, enum.Enum):
    HEURISTIC = "heuristic"
    EXTERNAL = "external"


class OptimizationGroup(Base):
    """
    Optimization group model.

    ``trip_ids`` keeps member order as proposed. Decided groups
    (approved/rejected) are immutable.
    """
    __tablename__ = "optimization_groups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_ids = Column(JSON, nullable=False)
    proposed_departure_at = Column(DateTime, nullable=False)
    vehicle_type = Column(Enum(VehicleType), nullable=False)

    distance_km = Column(Float, nullable=False)
    baseline_cost = Column(Float, nullable=False)
    combined_cost = Column(Float, nullable=False)
    estimated_savings = Column(Float, nullable=False)
    savings_percentage = Column(Float, nullable=False)

    source = Column(Enum(ProposalSource), default=ProposalSource.HEURISTIC, nullable=False)
    explanation = Column(Text, nullable=True)

    status = Column(Enum(GroupStatus), default=GroupStatus.PROPOSED, nullable=False, index=True)
    created_by = Column(String(255), nullable=True)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(255), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_decided(self) -> bool:
        return self.status != GroupStatus.PROPOSED

    def __repr__(self):
        return f"<OptimizationGroup(id={self.id}, trips={self.trip_ids}, status='{self.status.value}')>"
