"""
Difficulty sources: an HTTP endpoint keyed by date, or a fixed lookup table.
"""

import asyncio
from datetime import date
from typing import Dict, Mapping, Optional, Union

import aiohttp
import structlog

from curtailment_mining.core.exceptions import TransientExternalError


logger = structlog.get_logger(__name__)


class HttpDifficultySource:
    """
    Fetches historical difficulty from ``GET {base_url}/{YYYY-MM-DD}``.

    The endpoint is expected to answer ``{"difficulty": <number>}``. A 404 means
    the date is unknown and yields None; 429 and 5xx responses, timeouts and
    connection errors raise TransientExternalError.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self.logger = logger.bind(service="http_difficulty_source")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def fetch_difficulty(self, settlement_date: date) -> Optional[float]:
        url = f"{self.base_url}/{settlement_date.isoformat()}"
        try:
            session = self._get_session()
            async with session.get(url) as response:
                if response.status == 404:
                    self.logger.info("Difficulty not found", date=str(settlement_date))
                    return None
                if response.status == 429 or response.status >= 500:
                    raise TransientExternalError(
                        f"Difficulty endpoint returned {response.status}",
                        details={"url": url, "status": response.status},
                    )
                response.raise_for_status()
                data = await response.json()
        except asyncio.TimeoutError as e:
            raise TransientExternalError(f"Difficulty endpoint timeout for {settlement_date}") from e
        except aiohttp.ClientConnectionError as e:
            raise TransientExternalError(
                f"Difficulty endpoint unreachable for {settlement_date}",
                details={"error": str(e)},
            ) from e

        value = data.get("difficulty") if isinstance(data, dict) else None
        return float(value) if value is not None else None


class MappingDifficultySource:
    """Serves difficulty from an in-memory table keyed by date."""

    def __init__(self, values: Mapping[Union[date, str], float]):
        self._values: Dict[date, float] = {}
        for key, value in values.items():
            self._values[key if isinstance(key, date) else date.fromisoformat(key)] = float(value)

    async def fetch_difficulty(self, settlement_date: date) -> Optional[float]:
        return self._values.get(settlement_date)
