"""
Shared fixtures: a throwaway SQLite database and in-memory collaborators.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from curtailment_mining.core import database
from curtailment_mining.core.config import Settings
from curtailment_mining.core.database import DatabaseManager, close_database, init_database
from curtailment_mining.core.exceptions import TransientExternalError
from curtailment_mining.models import CurtailmentRecord
from curtailment_mining.services.reconciliation import RetryPolicy
from curtailment_mining.services.sources import CurtailmentEvent


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database with every table created."""
    await init_database(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await DatabaseManager.create_tables()
    yield
    await close_database()


@pytest.fixture
def fast_config():
    """Engine settings without delays so tests never sleep."""
    return Settings(
        environment="test",
        miner_models=["S19J_PRO", "S9", "M20S"],
        chunk_size=50,
        initial_concurrency=2,
        min_concurrency=1,
        max_concurrency=4,
        max_call_retries=2,
        retry_base_delay=0,
        retry_max_delay=0,
        source_call_spacing=0,
        call_timeout=5,
        max_unit_attempts=3,
        passes_per_unit=1,
        difficulty_api_url=None,
    )


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=2, base_delay=0, max_delay=0, timeout=5)


async def no_sleep(_delay):
    return None


def make_events(settlement_date: date, count: int, volume="10.5", farm_prefix="T_FARM") -> List[CurtailmentEvent]:
    """``count`` events on distinct periods for a single farm."""
    return [
        CurtailmentEvent(
            settlement_date=settlement_date,
            settlement_period=period,
            farm_id=f"{farm_prefix}-1",
            volume=Decimal(volume),
        )
        for period in range(1, count + 1)
    ]


class FakeCurtailmentSource:
    """In-memory curtailment source with optional injected failures."""

    def __init__(self, events: Optional[Dict[date, List[CurtailmentEvent]]] = None):
        self.events: Dict[date, List[CurtailmentEvent]] = dict(events or {})
        self.calls: List[date] = []
        self.failures: Dict[date, int] = {}
        self.on_fetch: Optional[Callable[[date], None]] = None

    def add(self, *events: CurtailmentEvent):
        for event in events:
            self.events.setdefault(event.settlement_date, []).append(event)

    def fail(self, settlement_date: date, times: int = 1):
        self.failures[settlement_date] = times

    async def fetch_events(self, settlement_date: date) -> List[CurtailmentEvent]:
        self.calls.append(settlement_date)
        if self.on_fetch is not None:
            self.on_fetch(settlement_date)
        if self.failures.get(settlement_date, 0) > 0:
            self.failures[settlement_date] -= 1
            raise TransientExternalError(f"source down for {settlement_date}")
        return list(self.events.get(settlement_date, []))


class RaisingDifficultySource:
    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def fetch_difficulty(self, settlement_date: date):
        self.calls += 1
        raise self.error


async def seed_curtailment(records: List[dict]):
    """Insert rows straight into ``curtailment_records``."""
    async with database.get_async_session() as session:
        for record in records:
            session.add(CurtailmentRecord(payment=Decimal(0), **record))


@pytest.fixture
def source():
    return FakeCurtailmentSource()
