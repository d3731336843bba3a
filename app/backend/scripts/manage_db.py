#!/usr/bin/env python3
"""
Database management script for the curtailment mining backend.
"""

import asyncio
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from alembic.config import Config
from alembic import command
from curtailment_mining.core import database
from curtailment_mining.core.database import init_database, close_database, DatabaseManager
from curtailment_mining.core.logging import setup_logging, get_logger
from curtailment_mining.models import (
    CurtailmentRecord,
    HistoricalBitcoinCalculation,
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
    ReconciliationCheckpoint,
)

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Database management commands")

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _alembic_config() -> Config:
    return Config(str(ALEMBIC_INI))


@app.command()
def init():
    """Initialize database with tables."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command()
def migrate():
    """Create a new migration."""
    message = typer.prompt("Migration message")
    command.revision(_alembic_config(), message=message, autogenerate=True)
    console.print(f"✅ Migration created: {message}")


@app.command()
def upgrade(revision: str = "head"):
    """Apply migrations."""
    command.upgrade(_alembic_config(), revision)
    console.print(f"✅ Database upgraded to: {revision}")


@app.command()
def downgrade(revision: str):
    """Downgrade database to specific revision."""
    command.downgrade(_alembic_config(), revision)
    console.print(f"⬇️ Database downgraded to: {revision}")


@app.command()
def current():
    """Show current database revision."""
    command.current(_alembic_config())


@app.command()
def history():
    """Show migration history."""
    command.history(_alembic_config())


@app.command()
def reset():
    """Reset database (drop all tables)."""
    confirm = typer.confirm("Are you sure you want to drop all tables?")
    if not confirm:
        console.print("❌ Operation cancelled")
        return

    async def _reset():
        setup_logging()
        await init_database()
        await DatabaseManager.drop_tables()
        await close_database()
        console.print("🗑️ All tables dropped!")

    asyncio.run(_reset())


@app.command()
def health():
    """Check database health."""
    async def _health() -> bool:
        setup_logging()
        await init_database()
        try:
            return await DatabaseManager.health_check()
        finally:
            await close_database()

    if asyncio.run(_health()):
        console.print("✅ Database is healthy!")
    else:
        console.print("❌ Database health check failed!")
        sys.exit(1)


@app.command()
def status():
    """Show row counts of every table."""
    table = Table(title="Database Status")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", style="green", justify="right")

    async def _status():
        setup_logging()
        await init_database()
        try:
            async with database.get_async_session() as db:
                for model in (
                    CurtailmentRecord,
                    HistoricalBitcoinCalculation,
                    BitcoinDailySummary,
                    BitcoinMonthlySummary,
                    BitcoinYearlySummary,
                    ReconciliationCheckpoint,
                ):
                    count = await db.scalar(select(func.count()).select_from(model))
                    table.add_row(model.__tablename__, str(count))
        finally:
            await close_database()

    asyncio.run(_status())
    console.print(table)


if __name__ == "__main__":
    app()
