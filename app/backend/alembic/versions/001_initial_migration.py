"""Initial migration - curtailment, derived mining records, summaries, checkpoints

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _summary_columns():
    return [
        sa.Column('miner_model', sa.String(length=32), nullable=False),
        sa.Column('bitcoin_mined', sa.Numeric(precision=24, scale=8), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Source curtailment records
    op.create_table('curtailment_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('settlement_date', sa.Date(), nullable=False, comment='Settlement date'),
        sa.Column('settlement_period', sa.Integer(), nullable=False, comment='30-minute settlement period, 1-48'),
        sa.Column('farm_id', sa.String(length=64), nullable=False, comment='BM unit identifier of the farm'),
        sa.Column('lead_party_name', sa.Text(), nullable=True, comment='Lead party operating the farm'),
        sa.Column('volume', sa.Numeric(), nullable=False, comment='Curtailed volume in MWh (magnitude)'),
        sa.Column('payment', sa.Numeric(), nullable=False, comment='Payment for the curtailment'),
        sa.Column('original_price', sa.Numeric(), nullable=True),
        sa.Column('final_price', sa.Numeric(), nullable=True),
        sa.Column('so_flag', sa.Boolean(), nullable=True),
        sa.Column('cadl_flag', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Derived mining-potential records
    op.create_table('historical_bitcoin_calculations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('settlement_date', sa.Date(), nullable=False),
        sa.Column('settlement_period', sa.Integer(), nullable=False),
        sa.Column('farm_id', sa.String(length=64), nullable=False),
        sa.Column('miner_model', sa.String(length=32), nullable=False),
        sa.Column('bitcoin_mined', sa.Numeric(precision=24, scale=8), nullable=False, comment='BTC, satoshi precision'),
        sa.Column('difficulty', sa.Numeric(), nullable=False, comment='Network difficulty used for the calculation'),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'settlement_date', 'settlement_period', 'farm_id', 'miner_model',
            name='uq_bitcoin_calc_date_period_farm_model'
        )
    )

    # Summary roll-ups
    op.create_table('bitcoin_daily_summaries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('summary_date', sa.Date(), nullable=False),
        *_summary_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('summary_date', 'miner_model', name='uq_bitcoin_daily_date_model')
    )
    op.create_table('bitcoin_monthly_summaries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('year_month', sa.String(length=7), nullable=False, comment='YYYY-MM'),
        *_summary_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('year_month', 'miner_model', name='uq_bitcoin_monthly_month_model')
    )
    op.create_table('bitcoin_yearly_summaries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('year', sa.String(length=4), nullable=False),
        *_summary_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('year', 'miner_model', name='uq_bitcoin_yearly_year_model')
    )

    # Reconciliation checkpoints
    op.create_table('reconciliation_checkpoints',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('unit_key', sa.String(length=16), nullable=False, comment='Unit identifier, YYYY-MM'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('expected_records', sa.Integer(), nullable=False),
        sa.Column('missing_records', sa.Integer(), nullable=False),
        sa.Column('repaired_records', sa.Integer(), nullable=False),
        sa.Column('failed_records', sa.Integer(), nullable=False),
        sa.Column('still_missing', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unit_key')
    )

    # Create indexes
    op.create_index('idx_curtailment_records_date', 'curtailment_records', ['settlement_date'])
    op.create_index(
        'idx_curtailment_records_date_period_farm', 'curtailment_records',
        ['settlement_date', 'settlement_period', 'farm_id']
    )
    op.create_index(
        'idx_bitcoin_calc_date_model', 'historical_bitcoin_calculations',
        ['settlement_date', 'miner_model']
    )
    op.create_index('idx_reconciliation_checkpoints_status', 'reconciliation_checkpoints', ['status'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('idx_reconciliation_checkpoints_status', table_name='reconciliation_checkpoints')
    op.drop_index('idx_bitcoin_calc_date_model', table_name='historical_bitcoin_calculations')
    op.drop_index('idx_curtailment_records_date_period_farm', table_name='curtailment_records')
    op.drop_index('idx_curtailment_records_date', table_name='curtailment_records')

    # Drop tables
    op.drop_table('reconciliation_checkpoints')
    op.drop_table('bitcoin_yearly_summaries')
    op.drop_table('bitcoin_monthly_summaries')
    op.drop_table('bitcoin_daily_summaries')
    op.drop_table('historical_bitcoin_calculations')
    op.drop_table('curtailment_records')
