"""
Trip Approval Service.

Drives trips through manager approval: submission, approval links,
cancellation, administrator overrides and reminders, expiry of unanswered
requests and escalation to another approver.

Every state change commits first; emails go out afterwards and never undo
a committed decision.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from tripshare.app.core import approval_tokens
from tripshare.app.core.approval_tokens import ApprovalLinks, ApprovalTokenService, TokenVerification
from tripshare.app.core.clock import Clock, utcnow
from tripshare.app.core.config import Settings
from tripshare.app.core.exceptions import (
    AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError, TokenError, ValidationError
)
from tripshare.app.core.fleet_config import vehicle_for
from tripshare.app.domain.approval.state_machine import (
    OVERRIDABLE_STATES, PENDING_STATES, initial_state, transition
)
from tripshare.app.domain.consolidation.cost_model import route_distance_km, trip_cost
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import (
    ApprovalAction, ManagerApprovalStatus, TripDataType, TripStatus, VehicleType
)
from tripshare.app.models.user import User
from tripshare.app.schemas.trip import TripSubmit
from tripshare.app.services import email_templates
from tripshare.app.services.audit import AuditAction, log_event, record_event
from tripshare.app.services.notifier import NotificationDispatcher, OutboundEmail
from tripshare.app.services.trip_store import TripStore

logger = logging.getLogger(__name__)


class ApprovalService:

    def __init__(
        self,
        store: TripStore,
        tokens: ApprovalTokenService,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.tokens = tokens
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock

    @property
    def link_base_url(self) -> str:
        return f"{self.settings.public_base_url.rstrip('/')}/{self.settings.api_version}"

    # Submission

    async def submit_trip(self, requester: User, data: TripSubmit) -> Trip:
        """
        Create a trip and start its approval.

        Args:
            requester: Employee submitting the trip
            data: Validated submission payload

        Returns:
            The persisted trip in its initial status

        Raises:
            ValidationError: If the route, schedule or passenger count is unusable
        """
        now = self.clock()
        self._validate_submission(data, now)

        async with self.store.atomic():
            trip, links = await self.open_trip(
                requester,
                origin=data.origin.strip(),
                destination=data.destination.strip(),
                departure_at=data.departure_at,
                return_at=data.return_at,
                vehicle_type=data.vehicle_type,
                passenger_count=data.passenger_count,
                purpose=data.purpose,
                cc_emails=data.cc_emails,
                now=now,
            )
            record_event(
                self.store.db, AuditAction.TRIP_SUBMITTED,
                actor_id=requester.id, actor_email=requester.email,
                target_type="trip", target_id=trip.id,
                metadata={"status": trip.status.value, "is_urgent": trip.is_urgent},
            )

        logger.info("Trip %s submitted as %s", trip.id, trip.status.value,
                    extra={"trip_id": trip.id, "requester_id": requester.id})
        await self.dispatcher.dispatch(await self.opening_messages(trip, links))
        return trip

    def _validate_submission(self, data: TripSubmit, now: datetime) -> None:
        if data.origin.strip().lower() == data.destination.strip().lower():
            raise ValidationError("Origin and destination must differ",
                                  {"origin": data.origin, "destination": data.destination})
        if data.departure_at <= now:
            raise ValidationError("Departure time must be in the future",
                                  {"departure_at": data.departure_at.isoformat()})
        if data.return_at is not None and data.return_at <= data.departure_at:
            raise ValidationError("Return time must be after departure",
                                  {"return_at": data.return_at.isoformat()})
        capacity = vehicle_for(data.vehicle_type).passenger_capacity
        if data.passenger_count > capacity:
            raise ValidationError(
                f"A {data.vehicle_type.value} seats at most {capacity} passengers",
                {"passenger_count": data.passenger_count, "capacity": capacity},
            )

    async def open_trip(
        self,
        requester: User,
        origin: str,
        destination: str,
        departure_at: datetime,
        return_at: Optional[datetime],
        vehicle_type: VehicleType,
        passenger_count: int,
        now: datetime,
        purpose: Optional[str] = None,
        cc_emails: Optional[List[str]] = None,
    ) -> Tuple[Trip, Optional[ApprovalLinks]]:
        """
        Persist a new raw trip in its initial status inside the caller's
        transaction, issuing approval links when a manager must decide.
        """
        status, is_urgent, timeout = initial_state(
            departure_at, now, requester.has_manager, self.settings
        )
        trip = Trip(
            requester_id=requester.id,
            requester_email=requester.email,
            requester_name=requester.full_name,
            origin=origin,
            destination=destination,
            departure_at=departure_at,
            return_at=return_at,
            purpose=purpose,
            cc_emails=list(cc_emails or []),
            status=status,
            data_type=TripDataType.RAW,
            is_urgent=is_urgent,
            vehicle_type=vehicle_type,
            passenger_count=passenger_count,
            estimated_cost=trip_cost(route_distance_km(origin, destination), vehicle_type),
            manager_email=requester.manager_email,
            manager_name=requester.manager_name,
            manager_approval_status=(
                ManagerApprovalStatus.PENDING if requester.has_manager else ManagerApprovalStatus.NOT_REQUIRED
            ),
        )
        await self.store.add(trip)

        links = None
        if status in PENDING_STATES:
            links = self.tokens.issue(trip.id, requester.manager_email, now + timeout)
            trip.manager_approval_token = links.jti
            trip.manager_approval_expires_at = links.expires_at
            await self.store.db.flush()
        return trip, links

    async def opening_messages(self, trip: Trip, links: Optional[ApprovalLinks]) -> List[OutboundEmail]:
        """Emails owed once a freshly opened trip has committed."""
        if links is None:
            return [email_templates.status_update(trip)]
        messages = [email_templates.approval_request(trip, links, self.link_base_url, trip.manager_email)]
        if trip.status == TripStatus.PENDING_URGENT:
            admins = await self.admin_recipients()
            if admins:
                messages.append(email_templates.urgent_admin_alert(trip, admins))
        return messages

    async def admin_recipients(self) -> List[str]:
        emails = await self.store.admin_emails() + list(self.settings.admin_emails)
        return list(dict.fromkeys(e for e in emails if e))

    # Manager decisions

    async def preview_link(self, token: str) -> Tuple[Trip, TokenVerification]:
        """Resolve an approval link without consuming it."""
        verification = await self.tokens.verify(token)
        try:
            self._check_verification(verification, expected_action=None)
            trip = await self.store.get_trip(verification.trip_id)
            self._check_current_token(trip, verification)
        except TokenError as exc:
            await self._log_token_rejection(exc, verification)
            raise
        return trip, verification

    async def approve_by_manager(self, token: str) -> Trip:
        """
        Approve a trip through the manager's link.

        Raises:
            TokenError: If the link is expired, invalid or already used
        """
        return await self._decide_by_manager(token, ApprovalAction.APPROVE)

    async def reject_by_manager(self, token: str, reason: str) -> Trip:
        """
        Reject a trip through the manager's link, recording the reason.

        Raises:
            ValidationError: If no reason is given
            TokenError: If the link is expired, invalid or already used
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        return await self._decide_by_manager(token, ApprovalAction.REJECT, reason.strip())

    async def _decide_by_manager(self, token: str, action: ApprovalAction, reason: Optional[str] = None) -> Trip:
        verification = await self.tokens.verify(token)
        now = self.clock()
        try:
            self._check_verification(verification, expected_action=action)
            async with self.store.atomic():
                trip = await self.store.get_trip_for_update(verification.trip_id)
                self._check_current_token(trip, verification)

                approved = action == ApprovalAction.APPROVE
                transition(trip, TripStatus.APPROVED if approved else TripStatus.REJECTED)
                trip.manager_approval_status = (
                    ManagerApprovalStatus.APPROVED if approved else ManagerApprovalStatus.REJECTED
                )
                trip.manager_approved_by = verification.approver
                trip.manager_approved_at = now
                trip.manager_approval_token = None
                if not approved:
                    trip.rejection_reason = reason

                record_event(
                    self.store.db,
                    AuditAction.MANAGER_APPROVED if approved else AuditAction.MANAGER_REJECTED,
                    actor_email=verification.approver,
                    target_type="trip", target_id=trip.id,
                    metadata={"reason": reason, "escalated": bool(trip.escalated_to)},
                )
        except TokenError as exc:
            await self._log_token_rejection(exc, verification)
            raise

        await self.tokens.mark_used(verification)
        logger.info("Trip %s %s by %s", trip.id, trip.status.value, verification.approver,
                    extra={"trip_id": trip.id})
        await self.dispatcher.dispatch([email_templates.status_update(trip, note=reason)])
        return trip

    @staticmethod
    def _check_verification(verification: TokenVerification, expected_action: Optional[ApprovalAction]) -> None:
        if verification.outcome == approval_tokens.EXPIRED:
            raise TokenError(TokenError.EXPIRED, verification.trip_id)
        if not verification.is_valid:
            reason = TokenError.REUSED if verification.replayed else TokenError.INVALID
            raise TokenError(reason, verification.trip_id)
        if expected_action is not None and verification.action != expected_action:
            raise TokenError(TokenError.INVALID, verification.trip_id)

    @staticmethod
    def _check_current_token(trip: Optional[Trip], verification: TokenVerification) -> None:
        """The link must be the one currently stored on the trip."""
        if trip is None:
            raise TokenError(TokenError.INVALID, verification.trip_id)
        if trip.manager_approval_token != verification.jti:
            decided = trip.manager_approval_status in (
                ManagerApprovalStatus.APPROVED, ManagerApprovalStatus.REJECTED
            )
            raise TokenError(TokenError.REUSED if decided else TokenError.INVALID, trip.id)

    async def _log_token_rejection(self, exc: TokenError, verification: TokenVerification) -> None:
        logger.warning(
            "Rejected approval token: %s", exc.reason,
            extra={"security_event": True, "trip_id": verification.trip_id, "jti": verification.jti},
        )
        await log_event(
            self.store.db, AuditAction.TOKEN_REJECTED,
            actor_email=verification.approver,
            target_type="trip", target_id=verification.trip_id,
            metadata={"reason": exc.reason, "action": verification.action.value if verification.action else None},
        )

    # Requester and administrator actions

    async def cancel_trip(self, trip_id: int, requester: User) -> Trip:
        """
        Cancel a trip that is still waiting for approval.

        Raises:
            NotFoundError: Unknown trip
            AuthorizationError: Trip belongs to someone else
            InvalidTransitionError: Trip is no longer pending
        """
        async with self.store.atomic():
            trip = await self.store.get_trip_for_update(trip_id)
            if trip is None:
                raise NotFoundError("Trip", trip_id)
            if trip.requester_id != requester.id:
                raise AuthorizationError("Only the requester can cancel this trip")

            transition(trip, TripStatus.CANCELLED)
            trip.manager_approval_status = ManagerApprovalStatus.CANCELLED
            trip.manager_approval_token = None

            record_event(
                self.store.db, AuditAction.TRIP_CANCELLED,
                actor_id=requester.id, actor_email=requester.email,
                target_type="trip", target_id=trip.id,
            )

        await self.dispatcher.dispatch([email_templates.status_update(trip)])
        return trip

    async def admin_override(self, trip_id: int, reason: str, admin: User, solo: bool = False) -> Trip:
        """
        Force approval of a pending or expired trip.

        Args:
            trip_id: Trip to approve
            reason: Mandatory justification, stored and audited
            admin: Administrator performing the override
            solo: Approve for solo travel instead of regular approval

        Raises:
            ValidationError: Missing reason
            NotFoundError: Unknown trip
            InvalidTransitionError: Trip is not pending or expired
        """
        if not reason or not reason.strip():
            raise ValidationError("An override reason is required")
        target = TripStatus.APPROVED_SOLO if solo else TripStatus.APPROVED

        async with self.store.atomic():
            trip = await self.store.get_trip_for_update(trip_id)
            if trip is None:
                raise NotFoundError("Trip", trip_id)
            if trip.status not in OVERRIDABLE_STATES:
                raise InvalidTransitionError(trip.id, trip.status.value, target.value)

            previous = transition(trip, target)
            trip.manager_approval_status = ManagerApprovalStatus.OVERRIDDEN
            trip.manager_approved_by = admin.email
            trip.manager_approved_at = self.clock()
            trip.manager_approval_token = None
            trip.override_reason = reason.strip()

            record_event(
                self.store.db, AuditAction.ADMIN_OVERRIDE,
                actor_id=admin.id, actor_email=admin.email,
                target_type="trip", target_id=trip.id,
                metadata={"reason": trip.override_reason, "from": previous.value, "to": target.value},
            )

        logger.info("Trip %s overridden to %s by %s", trip.id, target.value, admin.email,
                    extra={"trip_id": trip.id})
        await self.dispatcher.dispatch([email_templates.status_update(trip, note=trip.override_reason)])
        return trip

    async def escalate(self, trip_id: int, approver_email: str, admin: User) -> Trip:
        """
        Send an expired approval to another approver.

        The trip stays ``expired`` so later sweeps leave it alone; the new
        approver's link can still approve or reject it.

        Raises:
            NotFoundError: Unknown trip
            ConflictError: Trip is not expired or was already escalated
        """
        approver_email = (approver_email or "").strip()
        if "@" not in approver_email:
            raise ValidationError("A valid approver email is required", {"approver_email": approver_email})
        now = self.clock()

        async with self.store.atomic():
            trip = await self.store.get_trip_for_update(trip_id)
            if trip is None:
                raise NotFoundError("Trip", trip_id)
            if trip.status != TripStatus.EXPIRED:
                raise ConflictError(
                    "Only expired approvals can be escalated",
                    error_code="ERR_ESCALATION_001",
                    details={"trip_id": trip.id, "status": trip.status.value},
                )
            if trip.escalated_to:
                raise ConflictError(
                    f"Trip was already escalated to {trip.escalated_to}",
                    error_code="ERR_ESCALATION_002",
                    details={"trip_id": trip.id, "escalated_to": trip.escalated_to},
                )

            hours = self.settings.urgent_timeout_hours if trip.is_urgent else self.settings.approval_timeout_hours
            links = self.tokens.issue(trip.id, approver_email, now + timedelta(hours=hours))
            trip.manager_approval_token = links.jti
            trip.manager_approval_expires_at = links.expires_at
            trip.manager_approval_status = ManagerApprovalStatus.PENDING
            trip.escalated_to = approver_email
            trip.escalated_at = now

            record_event(
                self.store.db, AuditAction.APPROVAL_ESCALATED,
                actor_id=admin.id, actor_email=admin.email,
                target_type="trip", target_id=trip.id,
                metadata={"escalated_to": approver_email},
            )

        await self.dispatcher.dispatch([
            email_templates.approval_request(trip, links, self.link_base_url, approver_email, escalated=True)
        ])
        return trip

    async def send_reminder(self, trip_id: int, admin: User) -> Trip:
        """
        Re-send the approval request for a trip still awaiting a decision.

        A fresh link pair replaces the outstanding one, so links from the
        earlier email stop working. The deadline is not extended.

        Raises:
            NotFoundError: Unknown trip
            ConflictError: No decision is pending or the deadline has passed
        """
        now = self.clock()
        async with self.store.atomic():
            trip = await self.store.get_trip_for_update(trip_id)
            if trip is None:
                raise NotFoundError("Trip", trip_id)
            escalated_pending = trip.status == TripStatus.EXPIRED and bool(trip.escalated_to)
            if (
                (trip.status not in PENDING_STATES and not escalated_pending)
                or trip.manager_approval_status != ManagerApprovalStatus.PENDING
                or not trip.manager_approval_token
            ):
                raise ConflictError(
                    f"Trip {trip.id} is not awaiting an approval",
                    error_code="ERR_REMINDER_001",
                    details={"trip_id": trip.id, "status": trip.status.value},
                )
            deadline = trip.manager_approval_expires_at
            if deadline is None or deadline <= now:
                raise ConflictError(
                    f"The approval deadline for trip {trip.id} has passed",
                    error_code="ERR_REMINDER_002",
                    details={"trip_id": trip.id, "deadline": deadline.isoformat() if deadline else None},
                )

            approver_email = trip.escalated_to or trip.manager_email
            links = self.tokens.issue(trip.id, approver_email, deadline)
            trip.manager_approval_token = links.jti

            record_event(
                self.store.db, AuditAction.APPROVAL_REMINDER_SENT,
                actor_id=admin.id, actor_email=admin.email,
                target_type="trip", target_id=trip.id,
                metadata={"approver": approver_email, "deadline": deadline.isoformat()},
            )

        logger.info("Approval reminder for trip %s sent to %s", trip.id, approver_email,
                    extra={"trip_id": trip.id})
        await self.dispatcher.dispatch([
            email_templates.approval_request(
                trip, links, self.link_base_url, approver_email,
                escalated=escalated_pending, reminder=True,
            )
        ])
        return trip

    # Timeout sweep

    async def expire_overdue(self) -> List[Trip]:
        """
        Expire every pending trip whose approval deadline has passed.

        Safe to run repeatedly: trips are re-checked under a row lock and
        anything no longer pending is skipped.

        Returns:
            Trips expired by this run
        """
        now = self.clock()
        candidates = await self.store.list_overdue_approvals(now)
        expired = []

        for candidate in candidates:
            async with self.store.atomic():
                trip = await self.store.get_trip_for_update(candidate.id)
                if trip is None or trip.status not in PENDING_STATES:
                    continue
                if trip.manager_approval_expires_at is None or trip.manager_approval_expires_at > now:
                    continue

                transition(trip, TripStatus.EXPIRED)
                trip.manager_approval_status = ManagerApprovalStatus.EXPIRED
                trip.manager_approval_token = None
                trip.expired_notification_sent = False

                record_event(
                    self.store.db, AuditAction.APPROVAL_EXPIRED,
                    target_type="trip", target_id=trip.id,
                    metadata={"is_urgent": trip.is_urgent, "deadline": trip.manager_approval_expires_at.isoformat()},
                )
            expired.append(trip)

        if expired:
            logger.info("Expired %d overdue approval(s)", len(expired))
            admins = await self.admin_recipients()
            for trip in expired:
                messages = [email_templates.status_update(trip)]
                if admins:
                    messages.append(email_templates.expired_admin_notice(trip, admins))
                delivered = await self.dispatcher.dispatch(messages)
                if any(m.category != "expired_admin" for m in delivered):
                    async with self.store.atomic():
                        trip.expired_notification_sent = True
        return expired
