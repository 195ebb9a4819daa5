"""
Join request tests.

The target trip is an approved 4-seat car booked by the employee; the
colleague (who has a manager) and the solo employee (who has none) ask to ride.
"""

import pytest
from datetime import datetime, timedelta

from tripshare.app.core.exceptions import (
    AuthorizationError, CapacityExceededError, ConflictError, NotFoundError,
    TransactionFailedError, ValidationError
)
from tripshare.app.domain.consolidation.engine import evaluate_group
from tripshare.app.models.join_request import JoinRequest, JoinRequestStatus
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import TripStatus, VehicleType
from tripshare.app.services.audit import AuditAction, get_audit_trail

# Frozen test clock and a departure three days later
NOW = datetime(2026, 3, 2, 9, 0)
DEPARTURE = datetime(2026, 3, 5, 8, 0)
MANAGER = "boss@tripshare.test"


@pytest.fixture
async def booked_trip(trip_factory, employee):
    return await trip_factory(employee, DEPARTURE, purpose="Factory audit")


# TEST 1: A valid request is stored and admins are told
@pytest.mark.asyncio
async def test_request_join_creates_pending_request(join_service, store, booked_trip, colleague, admin_user, notifier):
    request = await join_service.request_join(booked_trip.id, colleague, reason="Same site visit")

    assert request.status == JoinRequestStatus.PENDING
    assert request.trip_id == booked_trip.id
    assert request.requester_email == colleague.email
    assert request.manager_email == MANAGER

    alert = notifier.sent[-1]
    assert set(alert["to"]) == {admin_user.email, "ops@tripshare.test"}
    assert alert["cc"] == [MANAGER]
    assert "Same site visit" in alert["text_body"]

    events = await get_audit_trail(store.db, action=AuditAction.JOIN_REQUESTED)
    assert [e.target_id for e in events] == [request.id]


@pytest.mark.asyncio
async def test_request_join_unknown_trip(join_service, colleague):
    with pytest.raises(NotFoundError):
        await join_service.request_join(999, colleague)


@pytest.mark.asyncio
async def test_request_join_requires_booked_trip(join_service, trip_factory, employee, colleague):
    pending = await trip_factory(employee, DEPARTURE, status=TripStatus.PENDING_APPROVAL)

    with pytest.raises(ConflictError) as exc_info:
        await join_service.request_join(pending.id, colleague)

    assert exc_info.value.error_code == "ERR_JOIN_TRIP_STATE"


# TEST 2: Checks run in order and the first failure wins
@pytest.mark.asyncio
async def test_duplicate_request_is_rejected(join_service, booked_trip, colleague):
    await join_service.request_join(booked_trip.id, colleague)

    with pytest.raises(ConflictError) as exc_info:
        await join_service.request_join(booked_trip.id, colleague)

    assert exc_info.value.error_code == "ERR_JOIN_DUPLICATE"


@pytest.mark.asyncio
async def test_same_day_booking_blocks_join(join_service, trip_factory, booked_trip, colleague):
    await trip_factory(colleague, DEPARTURE.replace(hour=15), destination="Long An Factory",
                       status=TripStatus.APPROVED_SOLO)

    with pytest.raises(ConflictError) as exc_info:
        await join_service.request_join(booked_trip.id, colleague)

    assert exc_info.value.error_code == "ERR_JOIN_SCHEDULE"
    assert exc_info.value.details["date"] == "2026-03-05"


@pytest.mark.asyncio
async def test_pending_trip_on_same_day_does_not_block(join_service, trip_factory, booked_trip, colleague):
    await trip_factory(colleague, DEPARTURE.replace(hour=15), status=TripStatus.PENDING_APPROVAL)

    request = await join_service.request_join(booked_trip.id, colleague)

    assert request.status == JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_duplicate_check_runs_before_schedule_check(join_service, trip_factory, booked_trip, colleague):
    await join_service.request_join(booked_trip.id, colleague)
    await trip_factory(colleague, DEPARTURE.replace(hour=15), destination="Long An Factory")

    with pytest.raises(ConflictError) as exc_info:
        await join_service.request_join(booked_trip.id, colleague)

    assert exc_info.value.error_code == "ERR_JOIN_DUPLICATE"


@pytest.mark.asyncio
async def test_owner_cannot_join_own_trip(join_service, booked_trip, employee):
    # The owner's own booking is on the same day, so the schedule check fires first
    with pytest.raises(ConflictError) as exc_info:
        await join_service.request_join(booked_trip.id, employee)

    assert exc_info.value.error_code == "ERR_JOIN_SCHEDULE"


@pytest.mark.asyncio
async def test_group_member_cannot_join(
    join_service, proposal_service, consolidation_engine, store, trip_factory,
    booked_trip, colleague, admin_user, mocker
):
    partner = await trip_factory(colleague, DEPARTURE.replace(minute=15))
    proposal = evaluate_group([booked_trip, partner], consolidation_engine.constraints)
    await proposal_service.stage_proposal(proposal, admin_user)
    # Isolate the membership check from the same-day check that would otherwise fire first
    mocker.patch.object(store, "requester_has_booked_trip_on", return_value=False)

    with pytest.raises(ConflictError) as exc_info:
        await join_service.request_join(booked_trip.id, colleague)

    assert exc_info.value.error_code == "ERR_JOIN_MEMBER"


# TEST 3: Seat capacity
@pytest.mark.asyncio
async def test_full_vehicle_rejects_request(join_service, trip_factory, employee, colleague):
    full = await trip_factory(employee, DEPARTURE, passenger_count=3, vehicle_type=VehicleType.CAR_4)

    with pytest.raises(CapacityExceededError) as exc_info:
        await join_service.request_join(full.id, colleague)

    assert exc_info.value.status_code == 409
    assert exc_info.value.current == 3
    assert exc_info.value.capacity == 3
    assert exc_info.value.details["shortfall"] == 1


@pytest.mark.asyncio
async def test_approved_joins_count_against_capacity(
    join_service, trip_factory, employee, colleague, solo_employee, admin_user, reload
):
    trip = await trip_factory(employee, DEPARTURE, passenger_count=2)
    first = await join_service.request_join(trip.id, colleague)
    second = await join_service.request_join(trip.id, solo_employee)
    second_id = second.id
    await join_service.approve_join_request(first.id, admin_user)

    with pytest.raises(CapacityExceededError):
        await join_service.approve_join_request(second_id, admin_user)

    assert (await reload(JoinRequest, second_id)).status == JoinRequestStatus.PENDING


# TEST 4: Approval opens a trip for the rider
@pytest.mark.asyncio
async def test_approve_opens_pending_trip_for_rider(
    join_service, store, booked_trip, colleague, admin_user, notifier, reload
):
    request = await join_service.request_join(booked_trip.id, colleague, reason="Supplier meeting")

    approved = await join_service.approve_join_request(request.id, admin_user, notes="Seat confirmed")

    assert approved.status == JoinRequestStatus.APPROVED
    assert approved.admin_notes == "Seat confirmed"
    assert approved.processed_by == admin_user.email
    assert approved.processed_at == NOW

    new_trip = await reload(Trip, approved.created_trip_id)
    assert new_trip.requester_id == colleague.id
    assert new_trip.status == TripStatus.PENDING_APPROVAL
    assert new_trip.departure_at == booked_trip.departure_at
    assert new_trip.origin == booked_trip.origin
    assert new_trip.vehicle_type == booked_trip.vehicle_type
    assert new_trip.passenger_count == 1
    assert new_trip.purpose == "Supplier meeting"
    assert new_trip.manager_approval_token is not None

    assert len(notifier.sent_to(MANAGER)) == 1
    decision = notifier.sent_to(colleague.email)[-1]
    assert decision["subject"] == "Join Request Approved"
    assert f"#{new_trip.id}" in decision["text_body"]

    events = await get_audit_trail(store.db, action=AuditAction.JOIN_APPROVED)
    assert events[0].meta_data == {"trip_id": booked_trip.id, "created_trip_id": new_trip.id}


@pytest.mark.asyncio
async def test_approve_for_rider_without_manager_is_auto_approved(
    join_service, booked_trip, solo_employee, admin_user, reload
):
    request = await join_service.request_join(booked_trip.id, solo_employee)

    approved = await join_service.approve_join_request(request.id, admin_user)

    new_trip = await reload(Trip, approved.created_trip_id)
    assert new_trip.status == TripStatus.AUTO_APPROVED
    assert new_trip.purpose == "Factory audit"


@pytest.mark.asyncio
async def test_failed_approval_leaves_request_pending(
    join_service, approval_service, store, booked_trip, colleague, admin_user, reload, mocker
):
    request = await join_service.request_join(booked_trip.id, colleague)
    request_id = request.id
    mocker.patch.object(approval_service, "open_trip", side_effect=RuntimeError("sequence exhausted"))

    with pytest.raises(TransactionFailedError):
        await join_service.approve_join_request(request_id, admin_user)

    stored = await reload(JoinRequest, request_id)
    assert stored.status == JoinRequestStatus.PENDING
    assert stored.processed_by is None
    assert stored.created_trip_id is None
    assert len(await store.list_trips(requester_id=colleague.id)) == 0


@pytest.mark.asyncio
async def test_decided_request_cannot_be_approved(join_service, booked_trip, colleague, admin_user):
    request = await join_service.request_join(booked_trip.id, colleague)
    request_id = request.id
    await join_service.reject_join_request(request_id, admin_user, reason="No seats on return")

    with pytest.raises(ConflictError) as exc_info:
        await join_service.approve_join_request(request_id, admin_user)

    assert exc_info.value.error_code == "ERR_JOIN_DECIDED"


# TEST 5: Rejection and cancellation
@pytest.mark.asyncio
async def test_reject_join_request(join_service, booked_trip, colleague, admin_user, notifier):
    request = await join_service.request_join(booked_trip.id, colleague)

    rejected = await join_service.reject_join_request(request.id, admin_user, reason="No seats on return")

    assert rejected.status == JoinRequestStatus.REJECTED
    assert rejected.admin_notes == "No seats on return"
    assert notifier.sent_to(colleague.email)[-1]["subject"] == "Join Request Rejected"


@pytest.mark.asyncio
async def test_only_requester_can_cancel(join_service, booked_trip, colleague, solo_employee, reload):
    request = await join_service.request_join(booked_trip.id, colleague)
    request_id = request.id

    with pytest.raises(AuthorizationError):
        await join_service.cancel_join_request(request_id, solo_employee)

    cancelled = await join_service.cancel_join_request(request_id, colleague)
    assert cancelled.status == JoinRequestStatus.CANCELLED
    assert cancelled.processed_by == colleague.email


@pytest.mark.asyncio
async def test_cancelled_request_can_be_made_again(join_service, booked_trip, colleague):
    first = await join_service.request_join(booked_trip.id, colleague)
    await join_service.cancel_join_request(first.id, colleague)

    second = await join_service.request_join(booked_trip.id, colleague)

    assert second.id != first.id
    assert second.status == JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_request(join_service, admin_user):
    with pytest.raises(NotFoundError):
        await join_service.reject_join_request(999, admin_user)


# TEST 6: Listing, stats and purge
@pytest.mark.asyncio
async def test_list_join_requests_scoped_to_user(join_service, booked_trip, colleague, solo_employee, admin_user):
    mine = await join_service.request_join(booked_trip.id, colleague)
    await join_service.request_join(booked_trip.id, solo_employee)

    own = await join_service.list_join_requests(colleague)
    everything = await join_service.list_join_requests(admin_user, include_all=True)
    for_trip = await join_service.list_join_requests(admin_user, trip_id=booked_trip.id, include_all=True)

    assert [r.id for r in own] == [mine.id]
    assert len(everything) == 2
    assert len(for_trip) == 2
    assert await join_service.list_join_requests(admin_user, status=JoinRequestStatus.REJECTED, include_all=True) == []


@pytest.mark.asyncio
async def test_join_request_stats(join_service, booked_trip, colleague, solo_employee, admin_user):
    first = await join_service.request_join(booked_trip.id, colleague)
    await join_service.request_join(booked_trip.id, solo_employee)
    await join_service.reject_join_request(first.id, admin_user)

    stats = await join_service.join_request_stats()

    assert stats == {"pending": 1, "approved": 0, "rejected": 1, "cancelled": 0, "total": 2}


@pytest.mark.asyncio
async def test_purge_removes_only_old_decided_requests(
    join_service, store, setup_session, booked_trip, colleague, admin_user
):
    def old_request(status, days_ago):
        touched = NOW - timedelta(days=days_ago)
        return JoinRequest(
            trip_id=booked_trip.id,
            requester_id=colleague.id,
            requester_email=colleague.email,
            requester_name=colleague.full_name,
            status=status,
            created_at=touched,
            updated_at=touched,
        )

    setup_session.add_all([
        old_request(JoinRequestStatus.REJECTED, 120),
        old_request(JoinRequestStatus.CANCELLED, 91),
        old_request(JoinRequestStatus.APPROVED, 30),
        old_request(JoinRequestStatus.PENDING, 200),
    ])
    await setup_session.commit()

    deleted = await join_service.purge_join_requests(admin_user, older_than_days=90)

    assert deleted == 2
    remaining = await join_service.list_join_requests(admin_user, include_all=True)
    assert sorted(r.status for r in remaining) == [JoinRequestStatus.APPROVED, JoinRequestStatus.PENDING]
    events = await get_audit_trail(store.db, action=AuditAction.JOIN_REQUESTS_PURGED)
    assert events[0].meta_data == {"deleted": 2, "older_than_days": 90}


@pytest.mark.asyncio
async def test_purge_rejects_non_positive_age(join_service, admin_user):
    with pytest.raises(ValidationError):
        await join_service.purge_join_requests(admin_user, older_than_days=0)
