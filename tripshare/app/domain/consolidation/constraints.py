"""
Consolidation constraints.
"""

from dataclasses import dataclass

from tripshare.app.core.config import Settings


@dataclass(frozen=True)
class ConsolidationConstraints:
    max_wait_minutes: int = 30
    min_savings_percentage: float = 15.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConsolidationConstraints":
        return cls(
            max_wait_minutes=settings.max_wait_minutes,
            min_savings_percentage=settings.min_savings_percentage,
        )
