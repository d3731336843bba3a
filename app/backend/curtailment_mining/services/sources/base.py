"""
Collaborator contracts and the immutable curtailment event type.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class CurtailmentEvent:
    """One curtailment instruction as read from the settlement data source."""
    settlement_date: date
    settlement_period: int
    farm_id: str
    volume: Any  # MWh magnitude, validated by the engine before use
    lead_party_name: Optional[str] = None
    payment: Decimal = Decimal(0)

    @property
    def key(self):
        return (self.settlement_period, self.farm_id)


@runtime_checkable
class CurtailmentSource(Protocol):
    """Returns every curtailment event for a settlement date; empty when there were none."""

    async def fetch_events(self, settlement_date: date) -> List[CurtailmentEvent]:
        ...


@runtime_checkable
class DifficultySource(Protocol):
    """Returns network difficulty for a date, or None when it is not known."""

    async def fetch_difficulty(self, settlement_date: date) -> Optional[float]:
        ...
