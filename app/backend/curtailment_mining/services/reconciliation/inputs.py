"""
Turns raw curtailment events into derivation inputs keyed by (period, farm).
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Tuple

import structlog

from curtailment_mining.core.exceptions import DataIntegrityError
from curtailment_mining.services.mining_calculator import validate_curtailed_volume
from curtailment_mining.services.sources.base import CurtailmentEvent


logger = structlog.get_logger(__name__)

DerivationKey = Tuple[int, str]


@dataclass
class DerivationInputs:
    volumes: Dict[DerivationKey, float] = field(default_factory=dict)
    invalid_events: int = 0

    @property
    def keys(self):
        return set(self.volumes)

    @property
    def periods(self):
        return {period for period, _ in self.volumes}

    def __len__(self):
        return len(self.volumes)


def merge_curtailment_events(events: Iterable[CurtailmentEvent]) -> DerivationInputs:
    """
    Validate volumes and merge rows sharing (period, farm) by summing them.

    Events with unusable volumes are logged and counted, never raised. Keys
    whose merged volume is zero produce no derived record and are dropped.
    """
    inputs = DerivationInputs()
    merged: Dict[DerivationKey, float] = {}

    for event in events:
        try:
            volume = validate_curtailed_volume(event.volume)
        except DataIntegrityError as e:
            inputs.invalid_events += 1
            logger.warning(
                "Skipping curtailment event with invalid volume",
                date=str(event.settlement_date),
                period=event.settlement_period,
                farm_id=event.farm_id,
                error=e.message,
            )
            continue

        merged[event.key] = merged.get(event.key, 0.0) + volume

    inputs.volumes = {key: volume for key, volume in merged.items() if volume > 0}
    return inputs
