"""
Curtailment source backed by the ``curtailment_records`` table.
"""

from datetime import date
from typing import List

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from curtailment_mining.core import database
from curtailment_mining.core.exceptions import TransientExternalError
from curtailment_mining.models import CurtailmentRecord
from .base import CurtailmentEvent


logger = structlog.get_logger(__name__)


class StorageCurtailmentSource:
    """
    Reads curtailment events that the ingestion pipeline already stored.

    Database failures surface as TransientExternalError so the engine's
    retry policy treats them like any other collaborator outage.
    """

    def __init__(self):
        self.logger = logger.bind(service="storage_curtailment_source")

    async def fetch_events(self, settlement_date: date) -> List[CurtailmentEvent]:
        try:
            async with database.get_async_session() as db:
                result = await db.execute(
                    select(CurtailmentRecord)
                    .where(CurtailmentRecord.settlement_date == settlement_date)
                    .order_by(CurtailmentRecord.settlement_period, CurtailmentRecord.farm_id, CurtailmentRecord.id)
                )
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise TransientExternalError(
                f"Failed to read curtailment records for {settlement_date}",
                details={"error": str(e)},
            ) from e

        events = [
            CurtailmentEvent(
                settlement_date=record.settlement_date,
                settlement_period=record.settlement_period,
                farm_id=record.farm_id,
                volume=record.volume,
                lead_party_name=record.lead_party_name,
                payment=record.payment,
            )
            for record in records
        ]

        self.logger.debug("Fetched curtailment events", date=str(settlement_date), count=len(events))
        return events
