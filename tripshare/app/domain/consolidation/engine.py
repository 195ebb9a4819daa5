"""
Consolidation Engine.

Finds approved trips that can share one vehicle and prices the result.

Flow:
1. Group candidates by (departure date, origin, destination)
2. Propose the mean departure time; drop groups where anyone would wait too long
3. Pick the smallest vehicle that seats everyone
4. Compare against everyone travelling alone; drop groups below the savings floor
5. Optionally add externally suggested groupings, each rebuilt through 2-4
6. Merge, keeping the first proposal for any member set
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from tripshare.app.core.fleet_config import vehicle_for
from tripshare.app.domain.consolidation.constraints import ConsolidationConstraints
from tripshare.app.domain.consolidation.cost_model import (
    baseline_cost, route_distance_km, savings_percentage, select_vehicle_tier, trip_cost
)
from tripshare.app.domain.consolidation.suggestion_source import SuggestionSource
from tripshare.app.models.optimization_group import ProposalSource
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import VehicleType

logger = logging.getLogger(__name__)

GroupKey = Tuple[date, str, str]

# trip id -> riders already attached through approved join requests
JoinedRiders = Mapping[int, int]


@dataclass
class ConsolidationProposal:
    trip_ids: List[int]
    proposed_departure_at: datetime
    vehicle_type: VehicleType
    passenger_count: int
    distance_km: float
    baseline_cost: float
    combined_cost: float
    savings_percentage: float
    source: ProposalSource
    explanation: str

    @property
    def estimated_savings(self) -> float:
        return self.baseline_cost - self.combined_cost

    @property
    def member_key(self) -> Tuple[int, ...]:
        return tuple(sorted(self.trip_ids))

    @property
    def cost_per_member(self) -> float:
        return self.combined_cost / len(self.trip_ids)


def grouping_key(trip: Trip) -> GroupKey:
    return trip.departure_at.date(), trip.origin, trip.destination


def group_candidates(trips: Iterable[Trip]) -> Dict[GroupKey, List[Trip]]:
    groups: Dict[GroupKey, List[Trip]] = {}
    for trip in trips:
        groups.setdefault(grouping_key(trip), []).append(trip)
    return groups


def proposed_departure(trips: Sequence[Trip]) -> datetime:
    """Mean departure time of the members, rounded to the minute."""
    earliest = min(t.departure_at for t in trips)
    offsets = [(t.departure_at - earliest).total_seconds() for t in trips]
    mean_minutes = round(sum(offsets) / len(offsets) / 60)
    return earliest.replace(second=0, microsecond=0) + timedelta(minutes=mean_minutes)


def evaluate_group(
    trips: Sequence[Trip],
    constraints: ConsolidationConstraints,
    source: ProposalSource = ProposalSource.HEURISTIC,
    explanation: Optional[str] = None,
    joined: Optional[JoinedRiders] = None,
) -> Optional[ConsolidationProposal]:
    """
    Price a candidate group, or return None if it breaks a constraint.

    All members must share one grouping key; callers guarantee it. Riders
    in ``joined`` travel with their trip and need a seat too.
    """
    if len(trips) < 2:
        return None
    trip_ids = [t.id for t in trips]

    departure = proposed_departure(trips)
    max_wait = timedelta(minutes=constraints.max_wait_minutes)
    worst = max(abs(t.departure_at - departure) for t in trips)
    if worst > max_wait:
        logger.debug("Group %s rejected: %s wait exceeds %s", trip_ids, worst, max_wait)
        return None

    joined = joined or {}
    passengers = sum(t.passenger_count + joined.get(t.id, 0) for t in trips)
    vehicle_type = select_vehicle_tier(passengers)
    if vehicle_type is None:
        logger.debug("Group %s rejected: %d passengers exceed every vehicle", trip_ids, passengers)
        return None

    first = trips[0]
    distance = route_distance_km(first.origin, first.destination)
    baseline = baseline_cost(distance, len(trips))
    combined = trip_cost(distance, vehicle_type)
    percentage = savings_percentage(baseline, combined)
    if baseline <= 0 or percentage < constraints.min_savings_percentage:
        logger.debug("Group %s rejected: %.1f%% savings below %.1f%%",
                     trip_ids, percentage, constraints.min_savings_percentage)
        return None

    if not explanation:
        explanation = (
            f"{len(trips)} trips {first.origin} -> {first.destination} on {departure:%Y-%m-%d} "
            f"can depart together at {departure:%H:%M} in one {vehicle_for(vehicle_type).name}, "
            f"saving {percentage:.1f}%"
        )

    return ConsolidationProposal(
        trip_ids=trip_ids,
        proposed_departure_at=departure,
        vehicle_type=vehicle_type,
        passenger_count=passengers,
        distance_km=distance,
        baseline_cost=baseline,
        combined_cost=combined,
        savings_percentage=round(percentage, 2),
        source=source,
        explanation=explanation,
    )


def heuristic_proposals(
    trips: Iterable[Trip],
    constraints: ConsolidationConstraints,
    joined: Optional[JoinedRiders] = None,
) -> List[ConsolidationProposal]:
    proposals = []
    for members in group_candidates(trips).values():
        members = sorted(members, key=lambda t: (t.departure_at, t.id))
        proposal = evaluate_group(members, constraints, joined=joined)
        if proposal is not None:
            proposals.append(proposal)
    return proposals


def merge_proposals(*proposal_lists: Iterable[ConsolidationProposal]) -> List[ConsolidationProposal]:
    """Concatenate proposal lists, dropping later duplicates of a member set."""
    seen = set()
    merged = []
    for proposals in proposal_lists:
        for proposal in proposals:
            if proposal.member_key in seen:
                continue
            seen.add(proposal.member_key)
            merged.append(proposal)
    return merged


class ConsolidationEngine:

    def __init__(self, constraints: ConsolidationConstraints, suggestion_source: Optional[SuggestionSource] = None):
        self.constraints = constraints
        self.suggestion_source = suggestion_source

    async def propose(
        self, trips: Sequence[Trip], joined: Optional[JoinedRiders] = None
    ) -> List[ConsolidationProposal]:
        """
        Build consolidation proposals for eligible trips.

        Args:
            trips: Approved trips that belong to no group
            joined: Approved join riders per trip id

        Returns:
            Heuristic proposals followed by any new externally suggested ones
        """
        heuristic = heuristic_proposals(trips, self.constraints, joined)
        external = await self._external_proposals(trips, joined)
        proposals = merge_proposals(heuristic, external)
        logger.info(
            "Consolidation produced %d proposal(s) (%d heuristic, %d external) from %d trip(s)",
            len(proposals), len(heuristic), len(external), len(trips),
        )
        return proposals

    async def _external_proposals(
        self, trips: Sequence[Trip], joined: Optional[JoinedRiders] = None
    ) -> List[ConsolidationProposal]:
        if self.suggestion_source is None or len(trips) < 2:
            return []
        try:
            suggestions = await self.suggestion_source.suggest(trips, self.constraints)
        except Exception as e:
            logger.warning("Suggestion source unavailable, using heuristic proposals only: %s", e)
            return []

        by_id = {t.id: t for t in trips}
        accepted = []
        for suggestion in suggestions:
            members = [by_id[i] for i in dict.fromkeys(suggestion.trip_ids) if i in by_id]
            if len(members) < 2:
                logger.info("Ignoring suggestion %s: fewer than two eligible trips", suggestion.trip_ids)
                continue
            if len({grouping_key(t) for t in members}) != 1:
                logger.info("Ignoring suggestion %s: members differ in date or route", suggestion.trip_ids)
                continue
            members.sort(key=lambda t: (t.departure_at, t.id))
            proposal = evaluate_group(
                members, self.constraints, ProposalSource.EXTERNAL, suggestion.explanation, joined
            )
            if proposal is None:
                logger.info("Ignoring suggestion %s: fails consolidation constraints", suggestion.trip_ids)
                continue
            accepted.append(proposal)
        return accepted
