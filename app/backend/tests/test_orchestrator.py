"""
End-to-end reconciliation runs against a real database.
"""

from datetime import date
from decimal import Decimal

import pytest

from curtailment_mining.core.exceptions import DatabaseError, InvalidMinerModel, TransientExternalError, ValidationError
from curtailment_mining.models import UnitStatus
from curtailment_mining.services.mining_calculator import SATOSHI
from curtailment_mining.services.reconciliation import ReconciliationOrchestrator, split_into_units
from curtailment_mining.services.reconciliation.difficulty import DEFAULT_DIFFICULTY
from curtailment_mining.services.reconciliation.repositories import CalculationRepository, SummaryRepository
from curtailment_mining.services.sources import MappingDifficultySource

from conftest import RaisingDifficultySource, make_events, no_sleep, seed_curtailment

DAY = date(2024, 6, 1)


class FlakyRepository(CalculationRepository):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    async def upsert_chunk(self, rows):
        if self.failures > 0:
            self.failures -= 1
            raise DatabaseError("connection reset by peer")
        return await super().upsert_chunk(rows)


class FailingDailySummaries(SummaryRepository):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    async def replace_daily(self, summary_date, miner_model, total):
        if self.failures > 0:
            self.failures -= 1
            raise DatabaseError("could not write daily summary")
        return await super().replace_daily(summary_date, miner_model, total)


async def assert_daily_matches_records(settlement_date, miner_models):
    summaries = SummaryRepository()
    for model in miner_models:
        records = await CalculationRepository().get_records(settlement_date, model)
        assert records
        expected = sum(Decimal(r.bitcoin_mined) for r in records).quantize(SATOSHI)
        assert await summaries.get_daily(settlement_date, model) == expected


def build(source, config, difficulty_source=None, **kwargs):
    return ReconciliationOrchestrator(source, difficulty_source, config=config, sleep=no_sleep, **kwargs)


def test_split_into_units_clips_months():
    units = split_into_units(date(2023, 12, 20), date(2024, 2, 10))
    assert [(u.key, u.start_date, u.end_date) for u in units] == [
        ("2023-12", date(2023, 12, 20), date(2023, 12, 31)),
        ("2024-01", date(2024, 1, 1), date(2024, 1, 31)),
        ("2024-02", date(2024, 2, 1), date(2024, 2, 10)),
    ]
    assert [u.key for u in split_into_units(DAY, DAY)] == ["2024-06"]


@pytest.mark.asyncio
async def test_reconcile_date_derives_every_record(db, source, fast_config):
    source.add(*make_events(DAY, 10))
    orchestrator = build(source, fast_config, MappingDifficultySource({DAY: 8e13}))

    result = await orchestrator.reconcile_date(DAY)

    (unit,) = result.units
    assert unit.status == UnitStatus.VERIFIED
    assert (unit.expected, unit.missing, unit.repaired, unit.still_missing) == (30, 30, 30, 0)
    assert result.units_processed == 1

    counts = await CalculationRepository().count_by_model(DAY)
    assert counts == {"S19J_PRO": 10, "S9": 10, "M20S": 10}

    summaries = SummaryRepository()
    daily = await summaries.get_daily(DAY, "S19J_PRO")
    assert daily is not None and daily > 0
    assert await summaries.get_monthly("2024-06", "S19J_PRO") == daily
    assert await summaries.get_yearly("2024", "S19J_PRO") == daily
    await assert_daily_matches_records(DAY, ["S19J_PRO", "S9", "M20S"])

    checkpoint = await orchestrator.checkpoint_store.get("2024-06")
    assert checkpoint.status == UnitStatus.VERIFIED.value
    assert checkpoint.attempts == 1


@pytest.mark.asyncio
async def test_difficulty_outage_uses_default(db, source, fast_config):
    source.add(*make_events(DAY, 2))
    orchestrator = build(source, fast_config, RaisingDifficultySource(TransientExternalError("503")))

    result = await orchestrator.reconcile_date(DAY)

    assert result.units[0].status == UnitStatus.VERIFIED
    records = await CalculationRepository().get_records(DAY)
    assert len(records) == 6
    assert {float(r.difficulty) for r in records} == {float(DEFAULT_DIFFICULTY)}


@pytest.mark.asyncio
async def test_chunk_failure_is_finished_by_next_run(db, source, fast_config):
    source.add(*make_events(DAY, 10))
    orchestrator = build(source, fast_config, calculation_repository=FlakyRepository(failures=1))

    first = await orchestrator.reconcile_date(DAY)

    (unit,) = first.units
    assert unit.status == UnitStatus.PARTIALLY_FIXED
    assert unit.failed == 10
    assert unit.repaired == 20
    assert unit.still_missing == 10
    assert "connection reset" in unit.error

    second = await orchestrator.reconcile_date(DAY)

    (unit,) = second.units
    assert unit.status == UnitStatus.VERIFIED
    assert unit.repaired == 10
    assert unit.attempts == 2
    assert sum((await CalculationRepository().count_by_model(DAY)).values()) == 30


@pytest.mark.asyncio
async def test_failed_summary_refresh_is_redone_before_verified(db, source, fast_config):
    source.add(*make_events(DAY, 4))
    orchestrator = build(source, fast_config, summary_repository=FailingDailySummaries(failures=1))

    first = await orchestrator.reconcile_date(DAY)

    (unit,) = first.units
    assert unit.status == UnitStatus.PARTIALLY_FIXED
    assert "daily summary" in unit.error
    assert sum((await CalculationRepository().count_by_model(DAY)).values()) == 12

    second = await orchestrator.reconcile_date(DAY)

    (unit,) = second.units
    assert unit.status == UnitStatus.VERIFIED
    assert unit.missing == 0
    await assert_daily_matches_records(DAY, ["S19J_PRO", "S9", "M20S"])
    assert await SummaryRepository().get_monthly("2024-06", "S9") == await SummaryRepository().get_daily(DAY, "S9")


@pytest.mark.asyncio
async def test_unit_fails_after_max_attempts(db, source, fast_config):
    fast_config.passes_per_unit = 3
    source.add(*make_events(DAY, 3))
    orchestrator = build(source, fast_config, calculation_repository=FlakyRepository(failures=100))

    result = await orchestrator.reconcile_date(DAY)

    (unit,) = result.units
    assert unit.status == UnitStatus.FAILED
    assert unit.attempts == 3

    skipped = await orchestrator.reconcile_date(DAY)
    assert skipped.units[0].skipped
    assert skipped.units_processed == 0


@pytest.mark.asyncio
async def test_failed_unit_retried_on_request(db, source, fast_config):
    fast_config.max_unit_attempts = 1
    source.add(*make_events(DAY, 3))
    flaky = FlakyRepository(failures=1)
    orchestrator = build(source, fast_config, calculation_repository=flaky)

    assert (await orchestrator.reconcile_date(DAY)).units[0].status == UnitStatus.FAILED

    result = await orchestrator.run(DAY, DAY, retry_failed=True)
    assert result.units[0].status == UnitStatus.VERIFIED


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(db, source, fast_config):
    source.add(*make_events(DAY, 4))
    orchestrator = build(source, fast_config)
    await orchestrator.reconcile_date(DAY)
    before = [(r.miner_model, r.settlement_period, r.bitcoin_mined) for r in await CalculationRepository().get_records(DAY)]

    skipped = await orchestrator.reconcile_date(DAY)
    assert skipped.units[0].skipped

    await orchestrator.checkpoint_store.reset()
    rerun = await orchestrator.reconcile_date(DAY)

    (unit,) = rerun.units
    assert unit.status == UnitStatus.VERIFIED
    assert unit.repaired == 0
    assert unit.missing == 0
    after = [(r.miner_model, r.settlement_period, r.bitcoin_mined) for r in await CalculationRepository().get_records(DAY)]
    assert after == before


@pytest.mark.asyncio
async def test_withdrawn_events_are_cleaned_up(db, source, fast_config):
    source.add(*make_events(DAY, 3))
    orchestrator = build(source, fast_config, miner_models=["S9"])
    await orchestrator.reconcile_date(DAY)

    source.events[DAY] = make_events(DAY, 2)
    await orchestrator.checkpoint_store.reset()
    result = await orchestrator.reconcile_date(DAY)

    assert result.units[0].removed == 1
    assert await CalculationRepository().count_by_model(DAY) == {"S9": 2}


@pytest.mark.asyncio
async def test_cancel_between_units_and_resume(db, source, fast_config):
    june_last, july_first = date(2024, 6, 30), date(2024, 7, 1)
    source.add(*make_events(june_last, 2), *make_events(july_first, 2))
    orchestrator = build(source, fast_config)

    def cancel_on_june(settlement_date):
        if settlement_date == june_last:
            orchestrator.cancel()

    source.on_fetch = cancel_on_june
    interrupted = await orchestrator.run(june_last, july_first)

    assert interrupted.cancelled
    assert [u.unit_key for u in interrupted.units] == ["2024-06"]
    assert interrupted.units[0].status == UnitStatus.VERIFIED
    assert await CalculationRepository().count_by_model(july_first) == {}

    pending = await orchestrator.checkpoint_store.resumable()
    assert [c.unit_key for c in pending] == ["2024-07"]

    source.on_fetch = None
    restarted = build(source, fast_config)
    resumed = await restarted.resume()

    assert not resumed.cancelled
    assert [u.unit_key for u in resumed.units] == ["2024-07"]
    assert resumed.units[0].status == UnitStatus.VERIFIED
    assert sum((await CalculationRepository().count_by_model(july_first)).values()) == 6


@pytest.mark.asyncio
async def test_invalid_miner_model_is_fatal(db, source, fast_config):
    with pytest.raises(InvalidMinerModel):
        build(source, fast_config, miner_models=["S19J_PRO", "S21_HYDRO"])


@pytest.mark.asyncio
async def test_reversed_range_is_rejected(db, source, fast_config):
    orchestrator = build(source, fast_config)
    with pytest.raises(ValidationError):
        await orchestrator.run(date(2024, 6, 2), DAY)
    with pytest.raises(ValidationError):
        await orchestrator.rebuild_summaries(date(2024, 6, 2), DAY)


@pytest.mark.asyncio
async def test_source_outage_leaves_unit_resumable(db, source, fast_config):
    source.add(*make_events(DAY, 2))
    source.fail(DAY, times=100)
    orchestrator = build(source, fast_config)

    result = await orchestrator.reconcile_date(DAY)

    (unit,) = result.units
    assert unit.status == UnitStatus.PARTIALLY_FIXED
    assert unit.error
    assert [c.unit_key for c in await orchestrator.checkpoint_store.resumable()] == ["2024-06"]


@pytest.mark.asyncio
async def test_audit_is_read_only(db, source, fast_config):
    source.add(*make_events(DAY, 5))
    orchestrator = build(source, fast_config)

    backlog = await orchestrator.audit(DAY, DAY)

    assert len(backlog) == 3
    assert await CalculationRepository().count_by_model(DAY) == {}
    assert await orchestrator.checkpoint_store.list() == []


@pytest.mark.asyncio
async def test_status_report_and_rebuild(db, source, fast_config):
    second_day = date(2024, 6, 2)
    source.add(*make_events(DAY, 4), *make_events(second_day, 4))
    orchestrator = build(source, fast_config)
    await orchestrator.reconcile_date(DAY)

    report = await orchestrator.status_report(DAY, second_day)
    assert [r.completion_percent for r in report] == [100.0, 0.0]

    summaries = SummaryRepository()
    daily = await summaries.get_daily(DAY, "S9")
    await summaries.replace_monthly("2024-06", "S9", Decimal("99"))

    counts = await orchestrator.rebuild_summaries(DAY, second_day)
    assert counts == {"days": 6, "months": 3, "years": 3}
    assert await summaries.get_monthly("2024-06", "S9") == daily


@pytest.mark.asyncio
async def test_reads_stored_curtailment_records(db, fast_config):
    await seed_curtailment([
        {"settlement_date": DAY, "settlement_period": 1, "farm_id": "T_ABRBO-1", "volume": Decimal("12.4")},
        {"settlement_date": DAY, "settlement_period": 1, "farm_id": "T_ABRBO-1", "volume": Decimal("3.1")},
        {"settlement_date": DAY, "settlement_period": 2, "farm_id": "T_ABRBO-1", "volume": Decimal("5")},
        {"settlement_date": DAY, "settlement_period": 3, "farm_id": "T_CLDNW-1", "volume": Decimal("-2")},
    ])
    orchestrator = ReconciliationOrchestrator(config=fast_config, sleep=no_sleep)

    result = await orchestrator.reconcile_date(DAY)

    assert result.units[0].status == UnitStatus.VERIFIED
    assert await CalculationRepository().count_by_model(DAY) == {"S19J_PRO": 2, "S9": 2, "M20S": 2}
