"""
Proposal Lifecycle Service.

Stages consolidation proposals as temp shadow trips and later promotes or
discards them. Promotion and rejection each run as one transaction over
row-locked member trips: either every step applies or none does.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from tripshare.app.core.clock import Clock, utcnow
from tripshare.app.core.exceptions import (
    ConflictError, NotFoundError, TransactionFailedError
)
from tripshare.app.core.fleet_config import vehicle_for
from tripshare.app.domain.approval.state_machine import CONSOLIDATION_ELIGIBLE, transition
from tripshare.app.domain.consolidation.engine import ConsolidationEngine, ConsolidationProposal
from tripshare.app.models.optimization_group import GroupStatus, OptimizationGroup
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import TripDataType, TripStatus
from tripshare.app.models.user import User
from tripshare.app.services import email_templates
from tripshare.app.services.audit import AuditAction, record_event
from tripshare.app.services.notifier import NotificationDispatcher
from tripshare.app.services.trip_store import TripStore

logger = logging.getLogger(__name__)


@dataclass
class StagingResult:
    staged: List[OptimizationGroup] = field(default_factory=list)
    skipped: List[ConsolidationProposal] = field(default_factory=list)


class ProposalLifecycleService:

    def __init__(
        self,
        store: TripStore,
        engine: ConsolidationEngine,
        dispatcher: NotificationDispatcher,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.engine = engine
        self.dispatcher = dispatcher
        self.clock = clock

    async def propose_optimization(self, admin: User) -> StagingResult:
        """
        Run the consolidation engine and stage every usable proposal.

        Proposals overlapping an earlier one in this run, or whose members
        changed since they were read, are skipped.
        """
        async with self.store.atomic():
            candidates = await self.store.list_consolidation_candidates()
            joined = await self.store.approved_join_counts(t.id for t in candidates)

        proposals = await self.engine.propose(candidates, joined)
        result = StagingResult()
        claimed = set()
        for proposal in proposals:
            if claimed.intersection(proposal.trip_ids):
                result.skipped.append(proposal)
                continue
            group = await self.stage_proposal(proposal, admin)
            if group is None:
                result.skipped.append(proposal)
                continue
            claimed.update(proposal.trip_ids)
            result.staged.append(group)

        logger.info("Staged %d proposal(s), skipped %d", len(result.staged), len(result.skipped))
        return result

    async def stage_proposal(self, proposal: ConsolidationProposal, admin: User) -> Optional[OptimizationGroup]:
        """
        Persist a proposal and one temp record per member.

        Returns:
            The new group, or None if a member is no longer eligible
        """
        async with self.store.atomic():
            parents = await self.store.lock_trips(proposal.trip_ids)
            unavailable = [
                trip_id for trip_id in proposal.trip_ids
                if trip_id not in parents
                or parents[trip_id].status not in CONSOLIDATION_ELIGIBLE
                or parents[trip_id].optimized_group_id is not None
            ]
            if unavailable:
                logger.info("Not staging proposal %s: trips %s unavailable", proposal.trip_ids, unavailable)
                return None

            group = await self.store.add(OptimizationGroup(
                trip_ids=list(proposal.trip_ids),
                proposed_departure_at=proposal.proposed_departure_at,
                vehicle_type=proposal.vehicle_type,
                distance_km=proposal.distance_km,
                baseline_cost=proposal.baseline_cost,
                combined_cost=proposal.combined_cost,
                estimated_savings=proposal.estimated_savings,
                savings_percentage=proposal.savings_percentage,
                source=proposal.source,
                explanation=proposal.explanation,
                status=GroupStatus.PROPOSED,
                created_by=admin.email,
            ))

            for trip_id in proposal.trip_ids:
                parent = parents[trip_id]
                self.store.db.add(self._temp_copy(parent, proposal, group.id))
                parent.optimized_group_id = group.id
            await self.store.db.flush()

            record_event(
                self.store.db, AuditAction.PROPOSAL_CREATED,
                actor_id=admin.id, actor_email=admin.email,
                target_type="optimization_group", target_id=group.id,
                metadata={
                    "trip_ids": group.trip_ids,
                    "source": proposal.source.value,
                    "savings_percentage": proposal.savings_percentage,
                },
            )
        return group

    @staticmethod
    def _temp_copy(parent: Trip, proposal: ConsolidationProposal, group_id: int) -> Trip:
        return Trip(
            requester_id=parent.requester_id,
            requester_email=parent.requester_email,
            requester_name=parent.requester_name,
            origin=parent.origin,
            destination=parent.destination,
            departure_at=proposal.proposed_departure_at,
            return_at=parent.return_at,
            original_departure_at=parent.departure_at,
            purpose=parent.purpose,
            status=TripStatus.OPTIMIZED,
            data_type=TripDataType.TEMP,
            parent_trip_id=parent.id,
            is_urgent=parent.is_urgent,
            vehicle_type=proposal.vehicle_type,
            passenger_count=parent.passenger_count,
            estimated_cost=parent.estimated_cost,
            actual_cost=proposal.cost_per_member,
            optimized_group_id=group_id,
            manager_email=parent.manager_email,
            manager_name=parent.manager_name,
            manager_approval_status=parent.manager_approval_status,
        )

    async def approve_proposal(self, group_id: int, admin: User) -> OptimizationGroup:
        """
        Promote a proposal onto its member trips.

        Each member takes its temp record's departure, vehicle and cost share,
        becomes ``final`` and ``optimized``; the temps are deleted and the
        group marked approved, all in one transaction.

        Raises:
            NotFoundError: Unknown group
            ConflictError: Group already decided or a member changed
            TransactionFailedError: Anything else failed; nothing was applied
        """
        try:
            async with self.store.atomic():
                group = await self._lock_undecided_group(group_id)
                parents = await self.store.lock_trips(group.trip_ids)
                temps = await self.store.temp_records_for_group(group.id)
                self._check_members(group, parents, temps)
                joined = await self.store.approved_join_counts(group.trip_ids)
                self._check_occupancy(group, parents, joined)

                for temp in temps:
                    parent = parents[temp.parent_trip_id]
                    parent.original_departure_at = parent.departure_at
                    parent.departure_at = temp.departure_at
                    parent.vehicle_type = temp.vehicle_type
                    parent.actual_cost = temp.actual_cost
                    parent.optimized_group_id = group.id
                    parent.notified = False
                    parent.data_type = TripDataType.FINAL
                    transition(parent, TripStatus.OPTIMIZED)
                await self.store.db.flush()

                await self.store.delete_temp_records(group.id)

                group.status = GroupStatus.APPROVED
                group.approved_by = admin.email
                group.approved_at = self.clock()
                record_event(
                    self.store.db, AuditAction.PROPOSAL_APPROVED,
                    actor_id=admin.id, actor_email=admin.email,
                    target_type="optimization_group", target_id=group.id,
                    metadata={"trip_ids": group.trip_ids, "combined_cost": group.combined_cost},
                )
        except (ConflictError, NotFoundError):
            raise
        except Exception as exc:
            logger.exception("Approval of optimization group %s rolled back", group_id)
            raise TransactionFailedError("Proposal approval", exc) from exc

        logger.info("Optimization group %s approved by %s", group.id, admin.email)
        members = [parents[trip_id] for trip_id in group.trip_ids]
        await self._notify_members(group, members)
        return group

    async def reject_proposal(self, group_id: int, admin: User, reason: Optional[str] = None) -> OptimizationGroup:
        """
        Discard a proposal.

        Temp records are deleted and every member returns to
        ``approved_solo`` with no group link. Member routes, times, vehicles
        and costs were never touched while the proposal was pending.

        Raises:
            NotFoundError: Unknown group
            ConflictError: Group already decided
            TransactionFailedError: Anything else failed; nothing was applied
        """
        try:
            async with self.store.atomic():
                group = await self._lock_undecided_group(group_id)
                parents = await self.store.lock_trips(group.trip_ids)

                await self.store.delete_temp_records(group.id)
                for trip in parents.values():
                    if trip.optimized_group_id == group.id:
                        transition(trip, TripStatus.APPROVED_SOLO)
                        trip.optimized_group_id = None

                group.status = GroupStatus.REJECTED
                group.rejected_by = admin.email
                group.rejected_at = self.clock()
                group.rejection_reason = reason
                record_event(
                    self.store.db, AuditAction.PROPOSAL_REJECTED,
                    actor_id=admin.id, actor_email=admin.email,
                    target_type="optimization_group", target_id=group.id,
                    metadata={"trip_ids": group.trip_ids, "reason": reason},
                )
        except (ConflictError, NotFoundError):
            raise
        except Exception as exc:
            logger.exception("Rejection of optimization group %s rolled back", group_id)
            raise TransactionFailedError("Proposal rejection", exc) from exc

        await self.dispatcher.dispatch(
            [email_templates.status_update(trip, note=reason) for trip in parents.values()]
        )
        return group

    async def get_proposal(self, group_id: int) -> Tuple[OptimizationGroup, List[Trip]]:
        group = await self.store.get_group(group_id)
        if group is None:
            raise NotFoundError("Optimization group", group_id)
        return group, await self.store.temp_records_for_group(group.id)

    async def list_proposals(self, status: Optional[GroupStatus] = None) -> List[Tuple[OptimizationGroup, List[Trip]]]:
        groups = await self.store.list_groups(status)
        return [(group, await self.store.temp_records_for_group(group.id)) for group in groups]

    async def _lock_undecided_group(self, group_id: int) -> OptimizationGroup:
        group = await self.store.get_group_for_update(group_id)
        if group is None:
            raise NotFoundError("Optimization group", group_id)
        if group.status != GroupStatus.PROPOSED:
            raise ConflictError(
                f"Optimization group {group_id} is already {group.status.value}",
                error_code="ERR_PROPOSAL_DECIDED",
                details={"group_id": group_id, "status": group.status.value},
            )
        return group

    @staticmethod
    def _check_members(group: OptimizationGroup, parents: Dict[int, Trip], temps: Sequence[Trip]) -> None:
        staged = {temp.parent_trip_id for temp in temps}
        for trip_id in group.trip_ids:
            trip = parents.get(trip_id)
            if trip is None or trip.optimized_group_id != group.id or trip_id not in staged:
                raise ConflictError(
                    f"Trip {trip_id} is no longer part of optimization group {group.id}",
                    error_code="ERR_PROPOSAL_STALE",
                    details={"group_id": group.id, "trip_id": trip_id},
                )
            if trip.status not in CONSOLIDATION_ELIGIBLE:
                raise ConflictError(
                    f"Trip {trip_id} is {trip.status.value} and cannot be consolidated",
                    error_code="ERR_PROPOSAL_STALE",
                    details={"group_id": group.id, "trip_id": trip_id, "status": trip.status.value},
                )

    @staticmethod
    def _check_occupancy(group: OptimizationGroup, parents: Dict[int, Trip], joined: Dict[int, int]) -> None:
        # Riders approved after staging still need a seat in the shared vehicle
        occupancy = sum(parents[i].passenger_count + joined.get(i, 0) for i in group.trip_ids)
        capacity = vehicle_for(group.vehicle_type).passenger_capacity
        if occupancy > capacity:
            raise ConflictError(
                f"Optimization group {group.id} needs {occupancy} seats but its vehicle has {capacity}",
                error_code="ERR_PROPOSAL_STALE",
                details={"group_id": group.id, "occupancy": occupancy, "capacity": capacity},
            )

    async def _notify_members(self, group: OptimizationGroup, members: List[Trip]) -> None:
        delivered = await self.dispatcher.dispatch(
            [email_templates.schedule_update(trip, group) for trip in members]
        )
        delivered_ids = {message.trip_id for message in delivered}
        if not delivered_ids:
            return
        async with self.store.atomic():
            for trip in members:
                if trip.id in delivered_ids:
                    trip.notified = True
