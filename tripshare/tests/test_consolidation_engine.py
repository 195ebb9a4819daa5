"""
Consolidation engine tests.

Trips are built in memory; the engine never touches the database.
"""

import json
import pytest
import httpx
from datetime import datetime

from tripshare.app.domain.consolidation.constraints import ConsolidationConstraints
from tripshare.app.domain.consolidation.cost_model import (
    route_distance_km, savings_percentage, select_vehicle_tier
)
from tripshare.app.domain.consolidation.engine import (
    ConsolidationEngine, ConsolidationProposal, evaluate_group, heuristic_proposals, merge_proposals
)
from tripshare.app.domain.consolidation.suggestion_source import (
    LLMSuggestionSource, SuggestedGrouping, parse_suggestions
)
from tripshare.app.models.optimization_group import ProposalSource
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import VehicleType

DAY = datetime(2026, 3, 5)


def make_trip(trip_id, hour, minute=0, passengers=1, origin="HCM Office",
              destination="Phan Thiet Factory", day=DAY):
    return Trip(
        id=trip_id,
        origin=origin,
        destination=destination,
        departure_at=day.replace(hour=hour, minute=minute),
        passenger_count=passengers,
    )


class StaticSource:
    def __init__(self, suggestions):
        self.suggestions = suggestions
        self.calls = 0

    async def suggest(self, trips, constraints):
        self.calls += 1
        return self.suggestions


@pytest.fixture
def constraints():
    return ConsolidationConstraints()


# TEST 1: Cost model building blocks
def test_vehicle_tier_selection():
    assert select_vehicle_tier(1) == VehicleType.CAR_4
    assert select_vehicle_tier(3) == VehicleType.CAR_4
    assert select_vehicle_tier(4) == VehicleType.CAR_7
    assert select_vehicle_tier(6) == VehicleType.CAR_7
    assert select_vehicle_tier(7) == VehicleType.VAN_16
    assert select_vehicle_tier(15) == VehicleType.VAN_16
    assert select_vehicle_tier(16) is None


def test_route_distance_for_known_and_unknown_locations():
    assert route_distance_km("HCM Office", "Phan Thiet Factory") > 100
    assert route_distance_km("hcm-office", "phan-thiet-factory") == route_distance_km("HCM Office", "Phan Thiet Factory")
    assert route_distance_km("HCM Office", "Somewhere Else") == 0
    assert savings_percentage(0, 0) == 0.0


# TEST 2: Three trips within the wait window share one car at their mean time
def test_scenario_three_morning_trips(constraints):
    trips = [make_trip(1, 8, 0), make_trip(2, 8, 15), make_trip(3, 8, 45)]

    proposals = heuristic_proposals(trips, constraints)

    assert len(proposals) == 1
    proposal = proposals[0]
    assert proposal.trip_ids == [1, 2, 3]
    assert proposal.proposed_departure_at == DAY.replace(hour=8, minute=20)
    assert proposal.vehicle_type == VehicleType.CAR_4
    assert proposal.passenger_count == 3
    assert proposal.savings_percentage == pytest.approx(66.67, abs=0.01)
    assert proposal.estimated_savings == pytest.approx(proposal.baseline_cost * 2 / 3)
    assert proposal.cost_per_member == pytest.approx(proposal.combined_cost / 3)
    assert proposal.source == ProposalSource.HEURISTIC
    assert "08:20" in proposal.explanation


def test_two_single_passenger_trips_save_half(constraints):
    proposal = evaluate_group([make_trip(1, 9), make_trip(2, 9, 20)], constraints)

    assert proposal.savings_percentage == 50.0
    assert proposal.proposed_departure_at == DAY.replace(hour=9, minute=10)


# TEST 3: Constraint failures discard the group
def test_group_exceeding_max_wait_is_discarded(constraints):
    # Mean is 08:45, so both members would wait 45 minutes
    assert evaluate_group([make_trip(1, 8), make_trip(2, 9, 30)], constraints) is None


def test_wait_exactly_at_limit_is_accepted(constraints):
    proposal = evaluate_group([make_trip(1, 8), make_trip(2, 9)], constraints)
    assert proposal is not None
    assert proposal.proposed_departure_at == DAY.replace(hour=8, minute=30)


def test_four_passengers_move_up_to_seven_seater(constraints):
    proposal = evaluate_group([make_trip(1, 8, passengers=2), make_trip(2, 8, 10, passengers=2)], constraints)

    assert proposal.vehicle_type == VehicleType.CAR_7
    assert proposal.savings_percentage == 37.5


def test_joined_riders_need_seats_too(constraints):
    group = [make_trip(1, 8), make_trip(2, 8, 10)]

    proposal = evaluate_group(group, constraints, joined={1: 3})

    assert proposal.passenger_count == 5
    assert proposal.vehicle_type == VehicleType.CAR_7
    assert heuristic_proposals(group, constraints, {2: 13}) == []


def test_van_for_two_bookings_is_below_savings_floor(constraints):
    # 8 passengers in a van at 15000/km against two cars at 8000/km saves 6.25%
    group = [make_trip(1, 8, passengers=4), make_trip(2, 8, 10, passengers=4)]

    assert evaluate_group(group, constraints) is None
    assert evaluate_group(group, ConsolidationConstraints(min_savings_percentage=5)).savings_percentage == 6.25


def test_group_too_large_for_any_vehicle(constraints):
    assert evaluate_group([make_trip(1, 8, passengers=9), make_trip(2, 8, passengers=9)], constraints) is None


def test_unknown_route_has_no_savings(constraints):
    group = [make_trip(1, 8, destination="Customer Site"), make_trip(2, 8, 5, destination="Customer Site")]
    assert evaluate_group(group, constraints) is None


def test_single_trip_is_never_a_group(constraints):
    assert evaluate_group([make_trip(1, 8)], constraints) is None


# TEST 4: Grouping requires identical date and route
def test_trips_on_different_dates_or_routes_are_not_grouped(constraints):
    trips = [
        make_trip(1, 8),
        make_trip(2, 8, 5, day=datetime(2026, 3, 6)),
        make_trip(3, 8, 10, destination="Long An Factory"),
    ]
    assert heuristic_proposals(trips, constraints) == []


def test_each_route_gets_its_own_proposal(constraints):
    trips = [
        make_trip(1, 8), make_trip(2, 8, 10),
        make_trip(3, 14, destination="Tay Ninh Factory"), make_trip(4, 14, 5, destination="Tay Ninh Factory"),
    ]
    proposals = heuristic_proposals(trips, constraints)
    assert sorted(p.member_key for p in proposals) == [(1, 2), (3, 4)]


# TEST 5: Merge keeps the first proposal per member set
def test_merge_drops_duplicate_member_sets(constraints):
    first = evaluate_group([make_trip(1, 8), make_trip(2, 8, 10)], constraints)
    duplicate = evaluate_group([make_trip(2, 8, 10), make_trip(1, 8)], constraints, ProposalSource.EXTERNAL)
    other = evaluate_group([make_trip(3, 8), make_trip(4, 8, 10)], constraints)

    merged = merge_proposals([first], [duplicate, other])

    assert merged == [first, other]
    assert all(isinstance(p, ConsolidationProposal) for p in merged)


# TEST 6: Parsing model output
def test_parse_clean_json_array():
    groupings = parse_suggestions('[{"tripIds": [1, 2], "proposedTime": "08:20", "savingsPercentage": 50}]')

    assert len(groupings) == 1
    assert groupings[0].trip_ids == [1, 2]
    assert groupings[0].proposed_time == "08:20"
    assert groupings[0].savings_percentage == 50


def test_parse_recovers_array_from_prose_and_drops_bad_items():
    text = (
        "Sure! Here are the groups:\n"
        '[{"tripIds": [1, 2], "explanation": "same morning"}, {"tripIds": [3]}, {"vehicle": "car-4"}]\n'
        "Let me know if you need more."
    )

    groupings = parse_suggestions(text)

    assert [g.trip_ids for g in groupings] == [[1, 2]]
    assert groupings[0].explanation == "same morning"


@pytest.mark.parametrize("text", ["", "no groups today", "[not json]"])
def test_parse_rejects_output_without_array(text):
    with pytest.raises(ValueError):
        parse_suggestions(text)


# TEST 7: Engine with an external source
@pytest.mark.asyncio
async def test_external_suggestion_is_rebuilt_by_engine(constraints):
    trips = [make_trip(1, 8), make_trip(2, 8, 20), make_trip(3, 11), make_trip(4, 11, 10)]
    source = StaticSource([
        SuggestedGrouping(trip_ids=[3, 4], vehicle="van-16", savings_percentage=99, explanation="late morning pair"),
    ])
    engine = ConsolidationEngine(constraints, source)

    proposals = await engine.propose(trips)

    # The whole-day heuristic group breaks the wait window; only the suggested pair survives
    assert len(proposals) == 1
    proposal = proposals[0]
    assert proposal.member_key == (3, 4)
    assert proposal.source == ProposalSource.EXTERNAL
    assert proposal.vehicle_type == VehicleType.CAR_4
    assert proposal.savings_percentage == 50.0
    assert proposal.proposed_departure_at == DAY.replace(hour=11, minute=5)
    assert proposal.explanation == "late morning pair"


@pytest.mark.asyncio
async def test_external_duplicate_of_heuristic_is_dropped(constraints):
    trips = [make_trip(1, 8), make_trip(2, 8, 20)]
    source = StaticSource([SuggestedGrouping(trip_ids=[2, 1])])

    proposals = await ConsolidationEngine(constraints, source).propose(trips)

    assert len(proposals) == 1
    assert proposals[0].source == ProposalSource.HEURISTIC


@pytest.mark.asyncio
async def test_invalid_external_suggestions_are_ignored(constraints):
    trips = [
        make_trip(1, 8), make_trip(2, 12),
        make_trip(3, 8, destination="Long An Factory"),
    ]
    source = StaticSource([
        SuggestedGrouping(trip_ids=[1, 2]),     # four hour gap
        SuggestedGrouping(trip_ids=[1, 3]),     # different route
        SuggestedGrouping(trip_ids=[1, 99]),    # unknown trip
        SuggestedGrouping(trip_ids=[1, 1]),     # duplicate id
    ])

    assert await ConsolidationEngine(constraints, source).propose(trips) == []
    assert source.calls == 1


@pytest.mark.asyncio
async def test_failing_source_falls_back_to_heuristic(constraints, mocker):
    source = mocker.Mock()
    source.suggest = mocker.AsyncMock(side_effect=httpx.ConnectTimeout("timed out"))
    trips = [make_trip(1, 8), make_trip(2, 8, 20)]

    proposals = await ConsolidationEngine(constraints, source).propose(trips)

    assert [p.member_key for p in proposals] == [(1, 2)]
    source.suggest.assert_awaited_once()


@pytest.mark.asyncio
async def test_source_not_called_for_fewer_than_two_trips(constraints, mocker):
    source = mocker.Mock()
    source.suggest = mocker.AsyncMock(return_value=[])

    assert await ConsolidationEngine(constraints, source).propose([make_trip(1, 8)]) == []
    source.suggest.assert_not_awaited()


# TEST 8: Chat completions client
@pytest.mark.asyncio
async def test_llm_source_posts_prompt_and_parses_reply(constraints):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        content = 'Groups:\n[{"tripIds": [1, 2], "explanation": "together"}]'
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = LLMSuggestionSource("http://llm.test/v1/chat/completions", api_key="k", client=client)
        groupings = await source.suggest([make_trip(1, 8), make_trip(2, 8, 20)], constraints)

    assert [g.trip_ids for g in groupings] == [[1, 2]]
    assert captured["auth"] == "Bearer k"
    assert captured["body"]["model"] == "gpt-4o-mini"
    assert "id=1 from=HCM Office" in captured["body"]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_llm_source_raises_on_unexpected_shape(constraints):
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = LLMSuggestionSource("http://llm.test/v1/chat/completions", client=client)
        with pytest.raises(ValueError):
            await source.suggest([make_trip(1, 8), make_trip(2, 8, 20)], constraints)
