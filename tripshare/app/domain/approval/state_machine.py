"""
Trip status transition table.

Every status change in the service goes through ``transition`` so the
table below is the only place that decides what may follow what.
"""

from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Tuple

from tripshare.app.core.config import Settings
from tripshare.app.core.exceptions import InvalidTransitionError
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import TripStatus

S = TripStatus

ALLOWED_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.APPROVED_SOLO, S.REJECTED, S.CANCELLED, S.EXPIRED}),
    S.PENDING_URGENT: frozenset({S.APPROVED, S.APPROVED_SOLO, S.REJECTED, S.CANCELLED, S.EXPIRED}),
    # Reachable from expired by admin override or an escalation approver's link
    S.EXPIRED: frozenset({S.APPROVED, S.APPROVED_SOLO, S.REJECTED}),
    S.AUTO_APPROVED: frozenset({S.OPTIMIZED, S.APPROVED_SOLO}),
    S.APPROVED: frozenset({S.OPTIMIZED, S.APPROVED_SOLO}),
    S.APPROVED_SOLO: frozenset(),
    S.OPTIMIZED: frozenset(),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
}

PENDING_STATES = frozenset({S.PENDING_APPROVAL, S.PENDING_URGENT})
OVERRIDABLE_STATES = frozenset({S.PENDING_APPROVAL, S.PENDING_URGENT, S.EXPIRED})
CONSOLIDATION_ELIGIBLE = frozenset({S.APPROVED, S.AUTO_APPROVED})

if set(ALLOWED_TRANSITIONS) != set(TripStatus):
    raise RuntimeError("Transition table does not cover every trip status")


def can_transition(current: TripStatus, target: TripStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(trip: Trip, target: TripStatus) -> TripStatus:
    """
    Move a trip to ``target``.

    Returns:
        The previous status

    Raises:
        InvalidTransitionError: If the table does not allow the move
    """
    current = trip.status
    if not can_transition(current, target):
        raise InvalidTransitionError(trip.id, current.value, target.value)
    trip.status = target
    return current


def initial_state(
    departure_at: datetime, submitted_at: datetime, has_manager: bool, settings: Settings
) -> Tuple[TripStatus, bool, timedelta]:
    """
    Classify a new trip.

    Returns:
        (initial status, is_urgent, manager response timeout)
    """
    is_urgent = departure_at - submitted_at < timedelta(hours=settings.urgent_threshold_hours)
    timeout = timedelta(
        hours=settings.urgent_timeout_hours if is_urgent else settings.approval_timeout_hours
    )
    if not has_manager:
        return S.AUTO_APPROVED, is_urgent, timeout
    return (S.PENDING_URGENT if is_urgent else S.PENDING_APPROVAL), is_urgent, timeout
