"""
Audit Log Database Model.

Tracks approval decisions, overrides and rejected approval links.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from tripshare.app.core.clock import utcnow
from tripshare.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - TRIP_SUBMITTED / TRIP_CANCELLED
    - MANAGER_APPROVED / MANAGER_REJECTED / ADMIN_OVERRIDE
    - APPROVAL_EXPIRED / APPROVAL_ESCALATED
    - TOKEN_REJECTED (security event)
    - PROPOSAL_* and JOIN_REQUEST_* decisions
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_email = Column(String(255), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    target_type = Column(String(50), nullable=True, index=True)
    target_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', target={self.target_type}:{self.target_id})>"
