"""
Curtailment records ingested from the settlement data source.

The reconciliation engine only ever reads this table.
"""

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Numeric, Boolean, Index

from curtailment_mining.core.database import Base, utc_now


class CurtailmentRecord(Base):
    """One curtailment instruction for a farm in one settlement period."""
    __tablename__ = "curtailment_records"

    id = Column(Integer, primary_key=True, autoincrement=True)

    settlement_date = Column(Date, nullable=False, comment="Settlement date")
    settlement_period = Column(Integer, nullable=False, comment="30-minute settlement period, 1-48")
    farm_id = Column(String(64), nullable=False, comment="BM unit identifier of the farm")
    lead_party_name = Column(Text, nullable=True, comment="Lead party operating the farm")

    volume = Column(Numeric, nullable=False, comment="Curtailed volume in MWh (magnitude)")
    payment = Column(Numeric, nullable=False, default=0, comment="Payment for the curtailment")
    original_price = Column(Numeric, nullable=True)
    final_price = Column(Numeric, nullable=True)
    so_flag = Column(Boolean, nullable=True)
    cadl_flag = Column(Boolean, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return (
            f"<CurtailmentRecord(date={self.settlement_date}, period={self.settlement_period}, "
            f"farm={self.farm_id}, volume={self.volume})>"
        )


Index("idx_curtailment_records_date", CurtailmentRecord.settlement_date)
Index(
    "idx_curtailment_records_date_period_farm",
    CurtailmentRecord.settlement_date,
    CurtailmentRecord.settlement_period,
    CurtailmentRecord.farm_id,
)
