#!/usr/bin/env python3
"""
Operator commands for the GoldStake bridge.
"""

import asyncio
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

# Add goldstake to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from alembic.config import Config
from alembic import command
from goldstake.core.config import settings
from goldstake.core.database import init_database, close_database, get_async_session, DatabaseManager
from goldstake.core.exceptions import GoldStakeException
from goldstake.core.logging import setup_logging, get_logger
from goldstake.indexer.recovery import RecoveryJob
from goldstake.models.settlement import QUEUE_MODELS, RequestStatus
from goldstake.scheduler.settlement_processor import build_processors
from goldstake.services.alert_service import AlertService
from goldstake.services.exchange_rate import ExchangeRateCache
from goldstake.services.intake import IntakeClassifier
from goldstake.services.rewards import RolloverMode, rollover_reward_pool, open_reward_pool
from goldstake.services.xrpl_client import LedgerClient
from goldstake.utils.clock import from_unix, utc_now

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="GoldStake bridge management commands")


def _fail(error: GoldStakeException):
    console.print(f"❌ {error.message}")
    raise typer.Exit(code=1)


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
def upgrade(revision: str = "head"):
    """Apply migrations."""
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, revision)

    console.print(f"✅ Database upgraded to: {revision}")


@app.command()
def rollover(mode: RolloverMode = typer.Option(RolloverMode.END, help="end closes the pool, snapshot keeps it active")):
    """Fold accrued rewards into pocket rewards for every staker."""
    async def _rollover():
        setup_logging()
        await init_database()
        alerts = AlertService()
        try:
            result = await rollover_reward_pool(mode, alerts=alerts)
        finally:
            await alerts.drain()
            await close_database()
        console.print(f"✅ Rollover ({result.mode.value}) updated {result.updated_count} accounts")

    try:
        asyncio.run(_rollover())
    except GoldStakeException as e:
        _fail(e)


@app.command("open-pool")
def open_pool(
    duration_days: int = typer.Option(..., help="Length of the reward period in days"),
    total_reward: str = typer.Option("0", help="Reward budget for the period"),
    start: Optional[datetime] = typer.Option(None, help="Period start (UTC), defaults to now"),
    stake_token: Optional[str] = typer.Option(None),
    reward_token: Optional[str] = typer.Option(None),
):
    """Open the active reward pool for the token pair."""
    async def _open():
        setup_logging()
        await init_database()
        try:
            pool = await open_reward_pool(
                period_start=start or utc_now(),
                duration_days=duration_days,
                total_reward=Decimal(total_reward),
                stake_token=stake_token,
                reward_token=reward_token,
            )
        finally:
            await close_database()
        console.print(
            f"✅ Reward pool #{pool.id} opened for {pool.stake_token}/{pool.reward_token} "
            f"until {pool.period_end.isoformat()}"
        )

    try:
        asyncio.run(_open())
    except GoldStakeException as e:
        _fail(e)


@app.command()
def recover(
    since: Optional[int] = typer.Option(None, help="Unix timestamp, skip older ledger transactions"),
    limit: int = typer.Option(settings.recovery_limit, help="Transactions to inspect per pool address"),
):
    """Replay missed pool payments from ledger history."""
    async def _recover():
        setup_logging()
        await init_database()
        alerts = AlertService()
        ledger = LedgerClient()
        try:
            await ledger.connect()
            rates = ExchangeRateCache()
            await rates.refresh()
            job = RecoveryJob(ledger, IntakeClassifier(ledger, rates, alerts), alerts)
            report = await job.recover_missed_transactions(since=from_unix(since), limit_per_address=limit)
        finally:
            await ledger.close()
            await alerts.drain()
            await close_database()

        table = Table(title="Recovery")
        table.add_column("Inspected", style="cyan")
        table.add_column("Replayed", style="green")
        table.add_column("Skipped", style="yellow")
        table.add_column("Errors", style="red")
        table.add_row(str(report.inspected), str(report.replayed), str(report.skipped), str(report.errors))
        console.print(table)

    try:
        asyncio.run(_recover())
    except GoldStakeException as e:
        _fail(e)


@app.command()
def sweep(timeout: int = typer.Option(settings.stale_processing_timeout, help="Seconds a request may stay processing")):
    """Fail settlement requests stuck in processing."""
    async def _sweep():
        setup_logging()
        await init_database()
        alerts = AlertService()
        try:
            for queue, processor in build_processors(ledger=None, alerts=alerts).items():
                failed = await processor.sweep_stale_processing(timeout)
                console.print(f"{queue.value}: {len(failed)} request(s) failed {failed if failed else ''}")
        finally:
            await alerts.drain()
            await close_database()

    asyncio.run(_sweep())


@app.command()
def status():
    """Show database health and queue counts."""
    table = Table(title="Settlement Queues")
    table.add_column("Queue", style="cyan")
    for request_status in RequestStatus:
        table.add_column(request_status.value, justify="right")

    async def _status():
        setup_logging()
        await init_database()

        is_healthy = await DatabaseManager.health_check()
        console.print("✅ Database connected" if is_healthy else "❌ Database disconnected")
        if not is_healthy:
            await close_database()
            raise typer.Exit(code=1)

        async with get_async_session() as session:
            for queue, model in QUEUE_MODELS.items():
                rows = await session.execute(
                    select(model.status, func.count()).group_by(model.status)
                )
                counts = {row[0]: row[1] for row in rows}
                table.add_row(queue.value, *(str(counts.get(s, 0)) for s in RequestStatus))

        console.print(table)
        await close_database()

    asyncio.run(_status())


if __name__ == "__main__":
    app()
