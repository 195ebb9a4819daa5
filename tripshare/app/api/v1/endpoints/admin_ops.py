"""
Admin Operations API Endpoints.

Inspection and retry of notifications parked in the dead letter queue.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tripshare.app.core.dependencies import get_dispatcher
from tripshare.app.core.exceptions import ConflictError, NotFoundError
from tripshare.app.core.guards import require_admin
from tripshare.app.db.session import get_db
from tripshare.app.models.dlq import DeadLetterQueue, DLQStatus
from tripshare.app.models.user import User
from tripshare.app.schemas.ops import DLQItemResponse, DLQListResponse, DLQRetryResponse
from tripshare.app.services.audit import AuditAction, log_event
from tripshare.app.services.notifier import SEND_EMAIL_TASK, NotificationDispatcher

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.get("/dlq", response_model=DLQListResponse)
async def list_dlq_items(
    status_filter: Optional[DLQStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List dead-lettered notifications, newest first."""
    query = select(DeadLetterQueue).order_by(DeadLetterQueue.created_at.desc(), DeadLetterQueue.id.desc())
    if status_filter:
        query = query.where(DeadLetterQueue.status == status_filter)
    result = await db.execute(query.limit(limit))
    items = result.scalars().all()
    return DLQListResponse(items=[DLQItemResponse.model_validate(i) for i in items], total=len(items))


@router.post("/dlq/{dlq_id}/retry", response_model=DLQRetryResponse)
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Resend a failed notification.

    Items are archived after repeated failures and can no longer be retried.
    """
    result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dlq_id))
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("DLQ item", dlq_id)
    if item.task_name != SEND_EMAIL_TASK or item.status in (DLQStatus.PROCESSED, DLQStatus.ARCHIVED):
        raise ConflictError(
            f"DLQ item {dlq_id} cannot be retried",
            details={"task_name": item.task_name, "status": item.status.value},
        )

    delivered = await dispatcher.retry(item)
    await log_event(
        db, AuditAction.DLQ_RETRIED,
        actor_id=current_user.id, actor_email=current_user.email,
        target_type="dlq", target_id=item.id,
        metadata={"delivered": delivered, "retry_count": item.retry_count},
    )
    return DLQRetryResponse(id=item.id, delivered=delivered, status=item.status, retry_count=item.retry_count)
