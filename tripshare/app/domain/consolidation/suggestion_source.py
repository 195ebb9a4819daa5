"""
External grouping suggestions.

An OpenAI-compatible chat model is asked which trips could share a
vehicle. Its answer is advisory only: it is parsed against a strict schema
here and every grouping is rebuilt and re-checked by the engine before it
can become a proposal.
"""

import json
import logging
import re
from typing import List, Optional, Protocol, Sequence

import httpx
from pydantic import AliasChoices, BaseModel, Field, TypeAdapter
from pydantic import ValidationError as SchemaValidationError

from tripshare.app.core.config import Settings
from tripshare.app.core.reliability import CircuitBreaker
from tripshare.app.domain.consolidation.constraints import ConsolidationConstraints
from tripshare.app.models.trip import Trip

logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


class SuggestedGrouping(BaseModel):
    """One grouping as returned by the suggestion model."""
    trip_ids: List[int] = Field(..., min_length=2, validation_alias=AliasChoices("trip_ids", "tripIds"))
    proposed_time: Optional[str] = Field(None, validation_alias=AliasChoices("proposed_time", "proposedTime"))
    vehicle: Optional[str] = None
    savings_percentage: Optional[float] = Field(
        None, validation_alias=AliasChoices("savings_percentage", "savingsPercentage")
    )
    explanation: Optional[str] = Field(None, max_length=1000)

    class Config:
        extra = "ignore"


_SUGGESTION_LIST = TypeAdapter(List[SuggestedGrouping])


def parse_suggestions(text: str) -> List[SuggestedGrouping]:
    """
    Parse model output into groupings.

    The whole reply is first validated as a JSON array. Failing that, the
    first ``[...]`` span is extracted and each element validated on its own,
    dropping malformed ones.

    Raises:
        ValueError: If no JSON array can be recovered at all
    """
    text = (text or "").strip()
    try:
        return _SUGGESTION_LIST.validate_json(text)
    except SchemaValidationError:
        pass

    match = _JSON_ARRAY.search(text)
    if not match:
        raise ValueError("No JSON array found in suggestion output")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ValueError(f"Suggestion output is not valid JSON: {e}") from e
    if not isinstance(raw, list):
        raise ValueError("Suggestion output is not a list")

    groupings = []
    for item in raw:
        try:
            groupings.append(SuggestedGrouping.model_validate(item))
        except SchemaValidationError as e:
            logger.info("Skipping malformed suggestion %r: %s", item, e.errors()[0]["msg"])
    return groupings


def build_prompt(trips: Sequence[Trip], constraints: ConsolidationConstraints) -> str:
    lines = [
        "These approved business trips may share vehicles.",
        f"Members of a group must share date, origin and destination and depart within "
        f"{constraints.max_wait_minutes} minutes of the group's departure time.",
        "Vehicles: car-4 (3 passengers), car-7 (6 passengers), van-16 (15 passengers).",
        f"Only suggest groups saving at least {constraints.min_savings_percentage:.0f}% "
        "compared with everyone travelling alone in a car-4.",
        "",
        "Trips:",
    ]
    for trip in trips:
        lines.append(
            f"- id={trip.id} from={trip.origin} to={trip.destination} "
            f"departure={trip.departure_at:%Y-%m-%d %H:%M} passengers={trip.passenger_count}"
        )
    lines += [
        "",
        'Reply with only a JSON array: [{"tripIds": [1, 2], "proposedTime": "HH:MM", '
        '"vehicle": "car-4", "savingsPercentage": 40, "explanation": "..."}]',
    ]
    return "\n".join(lines)


class SuggestionSource(Protocol):
    async def suggest(
        self, trips: Sequence[Trip], constraints: ConsolidationConstraints
    ) -> List[SuggestedGrouping]:
        ...


class LLMSuggestionSource:
    """
    Suggestion source backed by a chat completions endpoint.

    Args:
        api_url: Full URL of the ``/chat/completions`` endpoint
        api_key: Bearer key, if the endpoint needs one
        model: Model name sent with each request
        timeout: Per-request timeout in seconds
        client: Optional shared ``httpx.AsyncClient``
        breaker: Circuit breaker guarding the endpoint
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.client = client
        self.breaker = breaker or CircuitBreaker("suggestion-source", failure_threshold=3, reset_timeout=300)

    @classmethod
    def from_settings(cls, settings: Settings, breaker: Optional[CircuitBreaker] = None) -> Optional["LLMSuggestionSource"]:
        if not settings.suggestion_api_url:
            return None
        return cls(
            api_url=settings.suggestion_api_url,
            api_key=settings.suggestion_api_key,
            model=settings.suggestion_model,
            timeout=settings.suggestion_timeout_seconds,
            breaker=breaker,
        )

    async def suggest(self, trips, constraints) -> List[SuggestedGrouping]:
        return await self.breaker.call(self._request, trips, constraints)

    async def _request(self, trips, constraints) -> List[SuggestedGrouping]:
        payload = {
            "model": self.model,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": "You plan shared company transport. Answer with JSON only."},
                {"role": "user", "content": build_prompt(trips, constraints)},
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        if self.client is not None:
            response = await self.client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Unexpected suggestion response shape: {e}") from e
        return parse_suggestions(content)
