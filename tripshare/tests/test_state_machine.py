"""
Tests for the trip status transition table and status display text.
"""

import pytest
from datetime import datetime, timedelta

from tripshare.app.core.config import Settings
from tripshare.app.core.exceptions import InvalidTransitionError
from tripshare.app.domain.approval.state_machine import (
    ALLOWED_TRANSITIONS, can_transition, initial_state, transition
)
from tripshare.app.domain.approval.status_messages import StatusCategory, message_for, statuses_in
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import TripStatus

SUBMITTED_AT = datetime(2026, 3, 2, 9, 0)


@pytest.fixture
def settings():
    return Settings()


def test_every_status_has_transition_rules():
    assert set(ALLOWED_TRANSITIONS) == set(TripStatus)


@pytest.mark.parametrize("terminal", [
    TripStatus.APPROVED_SOLO, TripStatus.OPTIMIZED, TripStatus.REJECTED, TripStatus.CANCELLED,
])
def test_terminal_statuses_have_no_exit(terminal):
    assert all(not can_transition(terminal, target) for target in TripStatus)


def test_pending_trip_can_be_decided():
    for pending in (TripStatus.PENDING_APPROVAL, TripStatus.PENDING_URGENT):
        assert can_transition(pending, TripStatus.APPROVED)
        assert can_transition(pending, TripStatus.REJECTED)
        assert can_transition(pending, TripStatus.CANCELLED)
        assert can_transition(pending, TripStatus.EXPIRED)
        assert not can_transition(pending, TripStatus.OPTIMIZED)


def test_expired_trip_can_still_be_decided_but_not_cancelled():
    assert can_transition(TripStatus.EXPIRED, TripStatus.APPROVED)
    assert can_transition(TripStatus.EXPIRED, TripStatus.REJECTED)
    assert not can_transition(TripStatus.EXPIRED, TripStatus.CANCELLED)
    assert not can_transition(TripStatus.EXPIRED, TripStatus.PENDING_APPROVAL)


def test_only_approved_trips_reach_optimized():
    sources = {s for s in TripStatus if can_transition(s, TripStatus.OPTIMIZED)}
    assert sources == {TripStatus.APPROVED, TripStatus.AUTO_APPROVED}


def test_transition_returns_previous_status():
    trip = Trip(id=7, status=TripStatus.PENDING_APPROVAL)

    previous = transition(trip, TripStatus.APPROVED)

    assert previous == TripStatus.PENDING_APPROVAL
    assert trip.status == TripStatus.APPROVED


def test_illegal_transition_leaves_status_untouched():
    trip = Trip(id=7, status=TripStatus.REJECTED)

    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(trip, TripStatus.APPROVED)

    assert trip.status == TripStatus.REJECTED
    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"trip_id": 7, "current_status": "rejected", "target_status": "approved"}


def test_initial_state_standard(settings):
    status, urgent, timeout = initial_state(SUBMITTED_AT + timedelta(days=2), SUBMITTED_AT, True, settings)
    assert (status, urgent, timeout) == (TripStatus.PENDING_APPROVAL, False, timedelta(hours=48))


def test_initial_state_urgent_below_threshold(settings):
    departure = SUBMITTED_AT + timedelta(hours=23, minutes=59)
    status, urgent, timeout = initial_state(departure, SUBMITTED_AT, True, settings)
    assert (status, urgent, timeout) == (TripStatus.PENDING_URGENT, True, timedelta(hours=4))


def test_initial_state_exactly_at_threshold_is_not_urgent(settings):
    status, urgent, _ = initial_state(SUBMITTED_AT + timedelta(hours=24), SUBMITTED_AT, True, settings)
    assert status == TripStatus.PENDING_APPROVAL
    assert urgent is False


def test_initial_state_without_manager(settings):
    status, urgent, _ = initial_state(SUBMITTED_AT + timedelta(hours=3), SUBMITTED_AT, False, settings)
    assert status == TripStatus.AUTO_APPROVED
    assert urgent is True


def test_every_status_has_display_text():
    for status in TripStatus:
        text = message_for(status)
        assert text.label
        assert text.user_message
        assert text.email_subject


def test_status_categories_partition_statuses():
    categories = [statuses_in(c) for c in StatusCategory]
    assert set().union(*categories) == set(TripStatus)
    assert sum(len(c) for c in categories) == len(TripStatus)
    assert statuses_in(StatusCategory.PENDING) == {TripStatus.PENDING_APPROVAL, TripStatus.PENDING_URGENT}
