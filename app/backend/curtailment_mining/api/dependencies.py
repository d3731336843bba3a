"""
API dependencies for FastAPI endpoints.
"""

from typing import AsyncGenerator

from curtailment_mining.services.reconciliation import ReconciliationOrchestrator
from curtailment_mining.services.reconciliation_service import reconciliation_orchestrator


async def get_orchestrator() -> AsyncGenerator[ReconciliationOrchestrator, None]:
    """Orchestrator over the configured sources, one per request."""
    async with reconciliation_orchestrator() as orchestrator:
        yield orchestrator
