"""
Operations schemas.

Dead letter queue inspection and retry.
"""

from datetime import datetime
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

from tripshare.app.models.dlq import DLQStatus


class DLQItemResponse(BaseModel):
    id: int
    task_name: str
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True


class DLQListResponse(BaseModel):
    items: List[DLQItemResponse]
    total: int


class DLQRetryResponse(BaseModel):
    id: int
    delivered: bool
    status: DLQStatus
    retry_count: int
