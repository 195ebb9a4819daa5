"""
Join Request Service.

Lets a rider ask for a seat on an already booked trip. Approval clones the
trip for the rider, and the clone goes through manager approval like any
other submission.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from tripshare.app.core.clock import Clock, utcnow
from tripshare.app.core.exceptions import (
    AppException, AuthorizationError, CapacityExceededError, ConflictError,
    NotFoundError, TransactionFailedError, ValidationError
)
from tripshare.app.core.fleet_config import vehicle_for
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.models.join_request import JoinRequest, JoinRequestStatus
from tripshare.app.models.trip import Trip
from tripshare.app.models.user import User
from tripshare.app.services import email_templates
from tripshare.app.services.audit import AuditAction, record_event
from tripshare.app.services.notifier import NotificationDispatcher
from tripshare.app.services.trip_store import BOOKED_STATUSES, TripStore

logger = logging.getLogger(__name__)


class JoinRequestService:

    def __init__(
        self,
        store: TripStore,
        approval_service: ApprovalService,
        dispatcher: NotificationDispatcher,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.approval_service = approval_service
        self.dispatcher = dispatcher
        self.clock = clock

    async def request_join(self, trip_id: int, requester: User, reason: Optional[str] = None) -> JoinRequest:
        """
        Ask to join a booked trip.

        Checks run in order and the first failure wins: duplicate request,
        same-day booking, existing membership, then seat capacity.

        Raises:
            NotFoundError: Unknown trip
            ConflictError: Trip not booked or one of the checks failed
            CapacityExceededError: No seat left on the trip's vehicle
        """
        async with self.store.atomic():
            trip = await self.store.get_trip_for_update(trip_id)
            if trip is None:
                raise NotFoundError("Trip", trip_id)
            if trip.status not in BOOKED_STATUSES:
                raise ConflictError(
                    f"Trip {trip_id} is {trip.status.value} and cannot take riders",
                    error_code="ERR_JOIN_TRIP_STATE",
                    details={"trip_id": trip_id, "status": trip.status.value},
                )

            if await self.store.find_active_join_request(trip.id, requester.id) is not None:
                raise ConflictError(
                    "You already have an open request for this trip",
                    error_code="ERR_JOIN_DUPLICATE",
                    details={"trip_id": trip.id},
                )
            if await self.store.requester_has_booked_trip_on(requester.id, trip.departure_at):
                raise ConflictError(
                    f"You already have a booked trip on {trip.departure_at:%Y-%m-%d}",
                    error_code="ERR_JOIN_SCHEDULE",
                    details={"trip_id": trip.id, "date": trip.departure_at.date().isoformat()},
                )
            if requester.id in await self._member_requester_ids(trip):
                raise ConflictError(
                    "You are already travelling on this trip",
                    error_code="ERR_JOIN_MEMBER",
                    details={"trip_id": trip.id},
                )
            await self._check_capacity(trip)

            request = await self.store.add(JoinRequest(
                trip_id=trip.id,
                requester_id=requester.id,
                requester_email=requester.email,
                requester_name=requester.full_name,
                requester_department=requester.department,
                manager_email=requester.manager_email,
                manager_name=requester.manager_name,
                reason=reason,
                status=JoinRequestStatus.PENDING,
            ))
            record_event(
                self.store.db, AuditAction.JOIN_REQUESTED,
                actor_id=requester.id, actor_email=requester.email,
                target_type="join_request", target_id=request.id,
                metadata={"trip_id": trip.id},
            )

        logger.info("Join request %s created for trip %s", request.id, trip.id,
                    extra={"trip_id": trip.id, "requester_id": requester.id})
        admins = await self.approval_service.admin_recipients()
        if admins:
            await self.dispatcher.dispatch([email_templates.join_request_received(request, trip, admins)])
        return request

    async def _member_requester_ids(self, trip: Trip) -> List[int]:
        if trip.optimized_group_id is None:
            return [trip.requester_id]
        group = await self.store.get_group(trip.optimized_group_id)
        trip_ids = group.trip_ids if group is not None else [trip.id]
        return await self.store.requester_ids_for_trips(trip_ids) + [trip.requester_id]

    async def _check_capacity(self, trip: Trip) -> None:
        capacity = vehicle_for(trip.vehicle_type).passenger_capacity
        current = trip.passenger_count + await self.store.count_approved_joins(trip.id)
        if current + 1 > capacity:
            raise CapacityExceededError(current=current, capacity=capacity)

    async def approve_join_request(self, request_id: int, admin: User, notes: Optional[str] = None) -> JoinRequest:
        """
        Approve a pending request and open a trip for the rider.

        The seat check, the status change and the new trip commit together;
        on any failure the request stays pending and no trip exists.

        Raises:
            NotFoundError: Unknown request, trip or rider
            ConflictError: Request not pending or trip no longer booked
            CapacityExceededError: The trip filled up in the meantime
            TransactionFailedError: Anything else failed
        """
        now = self.clock()
        try:
            async with self.store.atomic():
                request = await self._lock_pending_request(request_id)
                trip = await self.store.get_trip_for_update(request.trip_id)
                if trip is None:
                    raise NotFoundError("Trip", request.trip_id)
                if trip.status not in BOOKED_STATUSES:
                    raise ConflictError(
                        f"Trip {trip.id} is {trip.status.value} and cannot take riders",
                        error_code="ERR_JOIN_TRIP_STATE",
                        details={"trip_id": trip.id, "status": trip.status.value},
                    )
                await self._check_capacity(trip)

                rider = await self.store.get_user(request.requester_id)
                if rider is None:
                    raise NotFoundError("User", request.requester_id)

                request.status = JoinRequestStatus.APPROVED
                request.admin_notes = notes
                request.processed_by = admin.email
                request.processed_at = now
                await self.store.db.flush()

                new_trip, links = await self.approval_service.open_trip(
                    rider,
                    origin=trip.origin,
                    destination=trip.destination,
                    departure_at=trip.departure_at,
                    return_at=trip.return_at,
                    vehicle_type=trip.vehicle_type,
                    passenger_count=1,
                    purpose=request.reason or trip.purpose,
                    now=now,
                )
                request.created_trip_id = new_trip.id

                record_event(
                    self.store.db, AuditAction.JOIN_APPROVED,
                    actor_id=admin.id, actor_email=admin.email,
                    target_type="join_request", target_id=request.id,
                    metadata={"trip_id": trip.id, "created_trip_id": new_trip.id},
                )
        except AppException:
            raise
        except Exception as exc:
            logger.exception("Approval of join request %s rolled back", request_id)
            raise TransactionFailedError("Join request approval", exc) from exc

        logger.info("Join request %s approved, trip %s opened as %s",
                    request.id, new_trip.id, new_trip.status.value)
        messages = await self.approval_service.opening_messages(new_trip, links)
        messages.append(email_templates.join_request_decision(request))
        await self.dispatcher.dispatch(messages)
        return request

    async def reject_join_request(self, request_id: int, admin: User, reason: Optional[str] = None) -> JoinRequest:
        async with self.store.atomic():
            request = await self._lock_pending_request(request_id)
            request.status = JoinRequestStatus.REJECTED
            request.admin_notes = reason
            request.processed_by = admin.email
            request.processed_at = self.clock()
            record_event(
                self.store.db, AuditAction.JOIN_REJECTED,
                actor_id=admin.id, actor_email=admin.email,
                target_type="join_request", target_id=request.id,
                metadata={"trip_id": request.trip_id, "reason": reason},
            )

        await self.dispatcher.dispatch([email_templates.join_request_decision(request)])
        return request

    async def cancel_join_request(self, request_id: int, requester: User) -> JoinRequest:
        """
        Withdraw one's own pending request.

        Raises:
            AuthorizationError: The request belongs to someone else
        """
        async with self.store.atomic():
            request = await self._lock_pending_request(request_id, owner=requester)
            request.status = JoinRequestStatus.CANCELLED
            request.processed_by = requester.email
            request.processed_at = self.clock()
            record_event(
                self.store.db, AuditAction.JOIN_CANCELLED,
                actor_id=requester.id, actor_email=requester.email,
                target_type="join_request", target_id=request.id,
                metadata={"trip_id": request.trip_id},
            )

        await self.dispatcher.dispatch([email_templates.join_request_decision(request)])
        return request

    async def _lock_pending_request(self, request_id: int, owner: Optional[User] = None) -> JoinRequest:
        request = await self.store.get_join_request_for_update(request_id)
        if request is None:
            raise NotFoundError("Join request", request_id)
        if owner is not None and request.requester_id != owner.id:
            raise AuthorizationError("Only the requester can cancel this join request")
        if request.status != JoinRequestStatus.PENDING:
            raise ConflictError(
                f"Join request {request_id} is already {request.status.value}",
                error_code="ERR_JOIN_DECIDED",
                details={"request_id": request_id, "status": request.status.value},
            )
        return request

    async def list_join_requests(
        self,
        user: User,
        status: Optional[JoinRequestStatus] = None,
        trip_id: Optional[int] = None,
        include_all: bool = False,
    ) -> List[JoinRequest]:
        """Administrators may see every request; riders only their own."""
        requester_id = None if include_all else user.id
        return await self.store.list_join_requests(requester_id=requester_id, status=status, trip_id=trip_id)

    async def join_request_stats(self) -> Dict[str, int]:
        counts = await self.store.join_request_counts()
        stats = {status.value: count for status, count in counts.items()}
        stats["total"] = sum(counts.values())
        return stats

    async def purge_join_requests(self, admin: User, older_than_days: int) -> int:
        """
        Delete decided requests untouched for ``older_than_days`` days.

        Pending requests are never purged.
        """
        if older_than_days < 1:
            raise ValidationError("older_than_days must be at least 1", {"older_than_days": older_than_days})
        cutoff = self.clock() - timedelta(days=older_than_days)

        async with self.store.atomic():
            deleted = await self.store.purge_join_requests(cutoff)
            record_event(
                self.store.db, AuditAction.JOIN_REQUESTS_PURGED,
                actor_id=admin.id, actor_email=admin.email,
                target_type="join_request",
                metadata={"deleted": deleted, "older_than_days": older_than_days},
            )

        logger.info("Purged %d join request(s) older than %d days", deleted, older_than_days)
        return deleted
