"""
Mining potential calculator.

Pure functions turning curtailed energy for one 30-minute settlement period
into the Bitcoin a fleet of a given miner model could have mined with it.
No I/O, no randomness: identical inputs always produce identical output, which
is what lets repair detect no-op recomputation.
"""

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Union

from curtailment_mining.core.exceptions import DataIntegrityError, InvalidMinerModel


SATOSHI = Decimal("0.00000001")
SETTLEMENT_PERIOD_HOURS = 0.5
BLOCKS_PER_SETTLEMENT_PERIOD = 3
SECONDS_PER_BLOCK = 600
CURRENT_BLOCK_REWARD = 3.125

# (first block date, reward) newest first
HALVING_SCHEDULE = (
    (date(2024, 4, 20), 3.125),
    (date(2020, 5, 11), 6.25),
    (date(2016, 7, 9), 12.5),
    (date(2012, 11, 28), 25.0),
)
GENESIS_BLOCK_REWARD = 50.0


class MinerModel(str, Enum):
    """Supported miner hardware profiles."""
    S19J_PRO = "S19J_PRO"
    S9 = "S9"
    M20S = "M20S"


@dataclass(frozen=True)
class MinerModelSpec:
    model: MinerModel
    hashrate_th: float  # TH/s
    power_w: float      # W

    @property
    def power_kw(self) -> float:
        return self.power_w / 1000


MINER_SPECS: Mapping[MinerModel, MinerModelSpec] = MappingProxyType({
    MinerModel.S19J_PRO: MinerModelSpec(MinerModel.S19J_PRO, hashrate_th=104, power_w=3068),
    MinerModel.S9: MinerModelSpec(MinerModel.S9, hashrate_th=13.5, power_w=1323),
    MinerModel.M20S: MinerModelSpec(MinerModel.M20S, hashrate_th=68, power_w=3360),
})


def get_miner_spec(model: Union[str, MinerModel]) -> MinerModelSpec:
    """Look up a miner spec, raising InvalidMinerModel for unknown names."""
    try:
        return MINER_SPECS[MinerModel(model)]
    except (ValueError, KeyError):
        raise InvalidMinerModel(
            f"Unknown miner model: {model}",
            details={"supported": [m.value for m in MinerModel]},
        )


def resolve_miner_models(names: Iterable[Union[str, MinerModel]]) -> List[MinerModel]:
    """Validate a configured list of miner model names, preserving order."""
    models: List[MinerModel] = []
    for name in names:
        model = get_miner_spec(name).model
        if model not in models:
            models.append(model)
    if not models:
        raise InvalidMinerModel("No miner models configured")
    return models


def block_reward_for(settlement_date: date) -> float:
    """Block subsidy in force on the given date."""
    for starts, reward in HALVING_SCHEDULE:
        if settlement_date >= starts:
            return reward
    return GENESIS_BLOCK_REWARD


def validate_curtailed_volume(raw_volume) -> float:
    """
    Turn a stored curtailment volume into MWh usable by the calculator.

    Returns 0.0 for zero volume (not an error, the event simply produces no
    record). Raises DataIntegrityError for negative, NaN, infinite or
    unparseable values.
    """
    try:
        volume = float(Decimal(str(raw_volume)))
    except (InvalidOperation, TypeError, ValueError):
        raise DataIntegrityError(f"Unparseable curtailment volume: {raw_volume!r}")

    if math.isnan(volume) or math.isinf(volume):
        raise DataIntegrityError(f"Non-finite curtailment volume: {raw_volume!r}")
    if volume < 0:
        raise DataIntegrityError(f"Negative curtailment volume: {raw_volume!r}")
    return volume


def compute_bitcoin_mined(
    curtailed_mwh: float,
    miner: Union[MinerModelSpec, MinerModel, str],
    difficulty: float,
    block_reward: float = CURRENT_BLOCK_REWARD,
) -> Decimal:
    """
    Bitcoin mined in one settlement period by every whole miner the curtailed
    energy could have powered.

    The fleet's share of network hash rate (``difficulty * 2**32 / 600`` H/s)
    is applied to the reward budget of one period (3 blocks). Rounded to
    satoshi precision, half away from zero.
    """
    spec = miner if isinstance(miner, MinerModelSpec) else get_miner_spec(miner)

    energy_kwh = curtailed_mwh * 1000
    miner_kwh_per_period = spec.power_kw * SETTLEMENT_PERIOD_HOURS
    miner_units = math.floor(energy_kwh / miner_kwh_per_period)

    if miner_units <= 0 or difficulty <= 0:
        return Decimal(0).quantize(SATOSHI)

    fleet_hashrate = miner_units * spec.hashrate_th * 1e12
    network_hashrate = difficulty * 2 ** 32 / SECONDS_PER_BLOCK
    share = fleet_hashrate / network_hashrate

    bitcoin = share * BLOCKS_PER_SETTLEMENT_PERIOD * block_reward
    return Decimal(bitcoin).quantize(SATOSHI, rounding=ROUND_HALF_UP)
