"""
Difficulty resolution with a per-run cache and a documented fallback.
"""

import math
from datetime import date
from typing import Dict, Optional

import structlog

from curtailment_mining.services.sources.base import DifficultySource
from .retry import RetryPolicy, retry_async
from .types import DifficultyResolution


logger = structlog.get_logger(__name__)

# Network difficulty used whenever the historical value cannot be retrieved
DEFAULT_DIFFICULTY = 113757508810853


class DifficultyResolver:
    """
    Resolves network difficulty per settlement date.

    Any retrieval failure (not found, timeout, malformed value) is absorbed
    into ``default_difficulty`` with ``from_default=True``. Results are cached
    for the lifetime of the resolver, which is one reconciliation run.
    """

    def __init__(
        self,
        source: Optional[DifficultySource] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_difficulty: float = DEFAULT_DIFFICULTY,
    ):
        self.logger = logger.bind(service="difficulty_resolver")
        self.source = source
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_difficulty = default_difficulty
        self._cache: Dict[date, DifficultyResolution] = {}
        self.external_calls = 0

    @property
    def cached_dates(self):
        return sorted(self._cache)

    async def resolve(self, settlement_date: date) -> DifficultyResolution:
        cached = self._cache.get(settlement_date)
        if cached is not None:
            return cached

        resolution = await self._lookup(settlement_date)
        self._cache[settlement_date] = resolution
        return resolution

    async def _lookup(self, settlement_date: date) -> DifficultyResolution:
        if self.source is None:
            return DifficultyResolution(self.default_difficulty, True)

        async def fetch():
            self.external_calls += 1
            return await self.source.fetch_difficulty(settlement_date)

        try:
            value = await retry_async(
                fetch,
                self.retry_policy,
                operation_name="fetch_difficulty",
            )
            difficulty = float(value) if value is not None else None
        except Exception as e:
            self.logger.warning(
                "⚠️ Difficulty lookup failed, using default",
                date=str(settlement_date),
                default=self.default_difficulty,
                error=str(e),
            )
            return DifficultyResolution(self.default_difficulty, True)

        if difficulty is None or math.isnan(difficulty) or math.isinf(difficulty) or difficulty <= 0:
            self.logger.warning(
                "Difficulty unavailable for date, using default",
                date=str(settlement_date),
                value=value,
                default=self.default_difficulty,
            )
            return DifficultyResolution(self.default_difficulty, True)

        return DifficultyResolution(difficulty, False)
