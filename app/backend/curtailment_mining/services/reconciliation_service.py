"""
Reconciliation service entry points.

Wires the reconciliation engine to the configured collaborators so the CLI,
the API and the scheduler build orchestrators the same way. Engine
components live in:
- curtailment_mining.services.reconciliation - audit, repair, summaries, checkpoints
- curtailment_mining.services.sources - curtailment and difficulty sources
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

from curtailment_mining.core.config import settings
from curtailment_mining.services.reconciliation import ReconciliationOrchestrator
from curtailment_mining.services.sources import HttpDifficultySource, StorageCurtailmentSource


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def reconciliation_orchestrator(
    cancel_event: Optional[asyncio.Event] = None,
    config=None,
) -> AsyncIterator[ReconciliationOrchestrator]:
    """
    Build an orchestrator over the stored curtailment records and, when
    ``difficulty_api_url`` is set, the HTTP difficulty source.

    Usage:
        async with reconciliation_orchestrator() as orchestrator:
            result = await orchestrator.run(start, end)
    """
    config = config or settings
    difficulty_source = None
    if config.difficulty_api_url:
        difficulty_source = HttpDifficultySource(config.difficulty_api_url, timeout=config.call_timeout)
    else:
        logger.info("No difficulty endpoint configured, default difficulty will be used")

    try:
        yield ReconciliationOrchestrator(
            StorageCurtailmentSource(),
            difficulty_source,
            config=config,
            cancel_event=cancel_event,
        )
    finally:
        if difficulty_source is not None:
            await difficulty_source.close()
