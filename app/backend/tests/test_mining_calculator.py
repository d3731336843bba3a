"""
Test the mining potential calculator.
"""

import math
from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from curtailment_mining.core.exceptions import DataIntegrityError, InvalidMinerModel
from curtailment_mining.services.mining_calculator import (
    MINER_SPECS,
    SATOSHI,
    MinerModel,
    block_reward_for,
    compute_bitcoin_mined,
    get_miner_spec,
    resolve_miner_models,
    validate_curtailed_volume,
)

DIFFICULTY = 113757508810853


def expected_bitcoin(mwh, model, difficulty, reward=3.125):
    spec = MINER_SPECS[model]
    miners = math.floor(mwh * 1000 / (spec.power_w / 1000 * 0.5))
    share = miners * spec.hashrate_th * 1e12 / (difficulty * 2 ** 32 / 600)
    return Decimal(share * 3 * reward).quantize(SATOSHI)


def test_miner_specs():
    s19 = get_miner_spec("S19J_PRO")
    assert s19.hashrate_th == 104
    assert s19.power_kw == pytest.approx(3.068)
    assert get_miner_spec(MinerModel.S9).power_w == 1323
    assert get_miner_spec("M20S").hashrate_th == 68


def test_unknown_miner_model_raises():
    with pytest.raises(InvalidMinerModel):
        get_miner_spec("S21_XP")

    with pytest.raises(InvalidMinerModel):
        compute_bitcoin_mined(10, "ANTMINER", DIFFICULTY)


def test_resolve_miner_models_dedups_and_keeps_order():
    assert resolve_miner_models(["S9", "S19J_PRO", "S9"]) == [MinerModel.S9, MinerModel.S19J_PRO]

    with pytest.raises(InvalidMinerModel):
        resolve_miner_models([])


@pytest.mark.parametrize("model", list(MinerModel))
def test_compute_matches_formula(model):
    result = compute_bitcoin_mined(25.0, model, DIFFICULTY)
    assert result == expected_bitcoin(25.0, model, DIFFICULTY)
    assert result > 0
    assert result.as_tuple().exponent == -8


def test_fractional_miners_are_floored():
    # One S19J Pro needs 1.534 kWh per period
    assert compute_bitcoin_mined(0.0015, MinerModel.S19J_PRO, DIFFICULTY) == 0
    one_miner = compute_bitcoin_mined(0.0016, MinerModel.S19J_PRO, DIFFICULTY)
    almost_two = compute_bitcoin_mined(0.003, MinerModel.S19J_PRO, DIFFICULTY)
    assert one_miner > 0
    assert one_miner == almost_two


def test_zero_volume_and_bad_difficulty_yield_zero():
    assert compute_bitcoin_mined(0, MinerModel.S9, DIFFICULTY) == 0
    assert compute_bitcoin_mined(50, MinerModel.S9, 0) == 0
    assert compute_bitcoin_mined(50, MinerModel.S9, -1) == 0


def test_more_energy_never_mines_less():
    small = compute_bitcoin_mined(10, MinerModel.M20S, DIFFICULTY)
    large = compute_bitcoin_mined(100, MinerModel.M20S, DIFFICULTY)
    assert large > small


def test_higher_difficulty_mines_less():
    easy = compute_bitcoin_mined(100, MinerModel.S19J_PRO, DIFFICULTY / 2)
    hard = compute_bitcoin_mined(100, MinerModel.S19J_PRO, DIFFICULTY)
    assert easy > hard


def test_block_reward_follows_halvings():
    assert block_reward_for(date(2025, 1, 1)) == 3.125
    assert block_reward_for(date(2024, 4, 20)) == 3.125
    assert block_reward_for(date(2024, 4, 19)) == 6.25
    assert block_reward_for(date(2019, 6, 1)) == 12.5
    assert block_reward_for(date(2014, 1, 1)) == 25.0
    assert block_reward_for(date(2010, 1, 1)) == 50.0


def test_block_reward_scales_result():
    current = compute_bitcoin_mined(100, MinerModel.S19J_PRO, DIFFICULTY, 3.125)
    previous = compute_bitcoin_mined(100, MinerModel.S19J_PRO, DIFFICULTY, 6.25)
    assert abs(previous - current * 2) <= SATOSHI


@pytest.mark.parametrize("raw", ["12.5", Decimal("3"), 7, 0])
def test_validate_accepts_usable_volumes(raw):
    assert validate_curtailed_volume(raw) == float(Decimal(str(raw)))


@pytest.mark.parametrize("raw", ["-1", Decimal("-0.5"), "NaN", "Infinity", "abc", None])
def test_validate_rejects_unusable_volumes(raw):
    with pytest.raises(DataIntegrityError):
        validate_curtailed_volume(raw)


@given(
    mwh=st.floats(min_value=0, max_value=5000, allow_nan=False, allow_infinity=False),
    difficulty=st.floats(min_value=1e9, max_value=1e15, allow_nan=False, allow_infinity=False),
    model=st.sampled_from(list(MinerModel)),
)
def test_compute_is_deterministic_and_non_negative(mwh, difficulty, model):
    first = compute_bitcoin_mined(mwh, model, difficulty)
    second = compute_bitcoin_mined(mwh, model, difficulty)
    assert first == second
    assert first >= 0
    assert first == first.quantize(SATOSHI)
