"""
Display text for every trip status.

The table must cover the whole ``TripStatus`` enum; a missing entry fails
at import time.
"""

import enum
from dataclasses import dataclass
from typing import Dict

from tripshare.app.models.trip_enums import TripStatus


class StatusCategory(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class StatusMessage:
    label: str
    description: str
    user_message: str
    admin_message: str
    email_subject: str
    category: StatusCategory


STATUS_MESSAGES: Dict[TripStatus, StatusMessage] = {
    TripStatus.PENDING_APPROVAL: StatusMessage(
        label="Pending Approval",
        description="Waiting for manager approval",
        user_message="Your trip request has been sent to your manager for approval.",
        admin_message="Trip is waiting for the manager's decision.",
        email_subject="Trip Approval Required",
        category=StatusCategory.PENDING,
    ),
    TripStatus.PENDING_URGENT: StatusMessage(
        label="Urgent - Pending Approval",
        description="Departs within 24 hours, waiting for manager approval",
        user_message="Your urgent trip request has been sent to your manager. Administrators have been alerted.",
        admin_message="Urgent trip departing within 24 hours is waiting for the manager's decision.",
        email_subject="URGENT: Trip Approval Required",
        category=StatusCategory.PENDING,
    ),
    TripStatus.AUTO_APPROVED: StatusMessage(
        label="Auto-Approved",
        description="Approved automatically, no manager assigned",
        user_message="Your trip was approved automatically.",
        admin_message="Trip was auto-approved because the requester has no manager.",
        email_subject="Trip Auto-Approved",
        category=StatusCategory.APPROVED,
    ),
    TripStatus.APPROVED: StatusMessage(
        label="Approved",
        description="Approved and waiting for vehicle arrangement",
        user_message="Your trip has been approved. Vehicle details will follow.",
        admin_message="Trip is approved and eligible for consolidation.",
        email_subject="Trip Approved",
        category=StatusCategory.APPROVED,
    ),
    TripStatus.APPROVED_SOLO: StatusMessage(
        label="Approved (Solo)",
        description="Approved to travel without sharing a vehicle",
        user_message="Your trip has been approved and will travel on its own.",
        admin_message="Trip is approved for solo travel and will not be consolidated.",
        email_subject="Trip Approved - Individual Travel",
        category=StatusCategory.APPROVED,
    ),
    TripStatus.OPTIMIZED: StatusMessage(
        label="Optimized",
        description="Merged into a shared vehicle booking",
        user_message="Your trip now shares a vehicle with colleagues. Check the updated departure time.",
        admin_message="Trip is part of an approved consolidation.",
        email_subject="Trip Schedule Updated - Shared Vehicle",
        category=StatusCategory.APPROVED,
    ),
    TripStatus.REJECTED: StatusMessage(
        label="Rejected",
        description="Rejected by the manager",
        user_message="Your trip request was rejected.",
        admin_message="Trip was rejected by the manager.",
        email_subject="Trip Request Rejected",
        category=StatusCategory.TERMINAL,
    ),
    TripStatus.CANCELLED: StatusMessage(
        label="Cancelled",
        description="Cancelled by the requester",
        user_message="Your trip request has been cancelled.",
        admin_message="Trip was cancelled by the requester.",
        email_subject="Trip Cancelled",
        category=StatusCategory.TERMINAL,
    ),
    TripStatus.EXPIRED: StatusMessage(
        label="Expired",
        description="No manager response before the deadline",
        user_message="Your manager did not respond in time. An administrator can still approve or escalate it.",
        admin_message="Approval deadline passed without a manager response. Override or escalate.",
        email_subject="Trip Approval Expired",
        category=StatusCategory.TERMINAL,
    ),
}

_missing = set(TripStatus) - set(STATUS_MESSAGES)
if _missing:
    raise RuntimeError(f"Missing status messages for: {sorted(s.value for s in _missing)}")


def message_for(status: TripStatus) -> StatusMessage:
    return STATUS_MESSAGES[status]


def statuses_in(category: StatusCategory) -> frozenset:
    return frozenset(s for s, m in STATUS_MESSAGES.items() if m.category == category)
