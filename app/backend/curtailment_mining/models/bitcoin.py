"""
Derived mining-potential records and their daily/monthly/yearly roll-ups.

Summaries are a cache over ``historical_bitcoin_calculations`` and can be
dropped and rebuilt at any time.
"""

from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, UniqueConstraint, Index

from curtailment_mining.core.database import Base, utc_now

BTC_NUMERIC = Numeric(24, 8)


class HistoricalBitcoinCalculation(Base):
    """Bitcoin that could have been mined with one farm's curtailed energy in one period."""
    __tablename__ = "historical_bitcoin_calculations"
    __table_args__ = (
        UniqueConstraint(
            "settlement_date", "settlement_period", "farm_id", "miner_model",
            name="uq_bitcoin_calc_date_period_farm_model",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    settlement_date = Column(Date, nullable=False)
    settlement_period = Column(Integer, nullable=False)
    farm_id = Column(String(64), nullable=False)
    miner_model = Column(String(32), nullable=False)

    bitcoin_mined = Column(BTC_NUMERIC, nullable=False, comment="BTC, satoshi precision")
    difficulty = Column(Numeric, nullable=False, comment="Network difficulty used for the calculation")
    calculated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return (
            f"<HistoricalBitcoinCalculation(date={self.settlement_date}, period={self.settlement_period}, "
            f"farm={self.farm_id}, model={self.miner_model}, btc={self.bitcoin_mined})>"
        )


class BitcoinDailySummary(Base):
    __tablename__ = "bitcoin_daily_summaries"
    __table_args__ = (
        UniqueConstraint("summary_date", "miner_model", name="uq_bitcoin_daily_date_model"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    summary_date = Column(Date, nullable=False)
    miner_model = Column(String(32), nullable=False)
    bitcoin_mined = Column(BTC_NUMERIC, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


class BitcoinMonthlySummary(Base):
    __tablename__ = "bitcoin_monthly_summaries"
    __table_args__ = (
        UniqueConstraint("year_month", "miner_model", name="uq_bitcoin_monthly_month_model"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    year_month = Column(String(7), nullable=False, comment="YYYY-MM")
    miner_model = Column(String(32), nullable=False)
    bitcoin_mined = Column(BTC_NUMERIC, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


class BitcoinYearlySummary(Base):
    __tablename__ = "bitcoin_yearly_summaries"
    __table_args__ = (
        UniqueConstraint("year", "miner_model", name="uq_bitcoin_yearly_year_model"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    year = Column(String(4), nullable=False)
    miner_model = Column(String(32), nullable=False)
    bitcoin_mined = Column(BTC_NUMERIC, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


# Database indexes for performance
Index(
    "idx_bitcoin_calc_date_model",
    HistoricalBitcoinCalculation.settlement_date,
    HistoricalBitcoinCalculation.miner_model,
)
