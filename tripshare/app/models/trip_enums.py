"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    PENDING_APPROVAL = "pending_approval"  # Waiting for the manager
    PENDING_URGENT = "pending_urgent"  # Departs within the urgent window, short timeout
    AUTO_APPROVED = "auto_approved"  # Requester has no manager
    APPROVED = "approved"  # Manager or admin approved
    APPROVED_SOLO = "approved_solo"  # Approved to travel alone, never consolidated
    OPTIMIZED = "optimized"  # Merged into a shared vehicle booking
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"  # Manager did not answer before the timeout


class TripDataType(str, enum.Enum):
    """Which copy of a logical trip a row represents."""
    RAW = "raw"  # As submitted
    TEMP = "temp"  # Staged shadow copy while a consolidation is proposed
    FINAL = "final"  # Overwritten by an approved consolidation


class ManagerApprovalStatus(str, enum.Enum):
    """State of the manager decision attached to a trip."""
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    OVERRIDDEN = "overridden"


class VehicleType(str, enum.Enum):
    """Bookable vehicle tiers."""
    CAR_4 = "car-4"
    CAR_7 = "car-7"
    VAN_16 = "van-16"


class ApprovalAction(str, enum.Enum):
    """Action encoded in a manager approval link."""
    APPROVE = "approve"
    REJECT = "reject"
