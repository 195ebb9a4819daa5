"""
Audit logging service for approval decisions and security events.

Provides centralized logging for compliance and security monitoring.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from tripshare.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TRIP_SUBMITTED = "TRIP_SUBMITTED"
    TRIP_CANCELLED = "TRIP_CANCELLED"

    # Manager and admin decisions
    MANAGER_APPROVED = "MANAGER_APPROVED"
    MANAGER_REJECTED = "MANAGER_REJECTED"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"
    APPROVAL_EXPIRED = "APPROVAL_EXPIRED"
    APPROVAL_ESCALATED = "APPROVAL_ESCALATED"
    APPROVAL_REMINDER_SENT = "APPROVAL_REMINDER_SENT"
    TOKEN_REJECTED = "TOKEN_REJECTED"

    # Consolidation
    PROPOSAL_CREATED = "PROPOSAL_CREATED"
    PROPOSAL_APPROVED = "PROPOSAL_APPROVED"
    PROPOSAL_REJECTED = "PROPOSAL_REJECTED"

    # Join requests
    JOIN_REQUESTED = "JOIN_REQUESTED"
    JOIN_APPROVED = "JOIN_APPROVED"
    JOIN_REJECTED = "JOIN_REJECTED"
    JOIN_CANCELLED = "JOIN_CANCELLED"
    JOIN_REQUESTS_PURGED = "JOIN_REQUESTS_PURGED"

    # Operations
    DLQ_RETRIED = "DLQ_RETRIED"


def record_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_email: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Stage an audit entry in the caller's transaction.

    The entry is written only if the surrounding transaction commits, so a
    rolled back decision never leaves an audit trail claiming it happened.
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_email=actor_email,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_data=metadata,
        ip_address=ip_address
    )
    db.add(audit_log)
    return audit_log


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_email: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log a standalone event to the audit log and commit it.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_email: Email of actor
        target_type: Kind of record acted upon ("trip", "optimization_group", ...)
        target_id: ID of the record acted upon
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = record_event(
        db, action, actor_id, actor_email, target_type, target_id, metadata, ip_address
    )
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if target_type:
        query = query.where(AuditLog.target_type == target_type)

    if target_id is not None:
        query = query.where(AuditLog.target_id == target_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
