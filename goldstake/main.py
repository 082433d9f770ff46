"""
Main entry point for the bridge service.

Boot order: database, exchange rate, ledger connection (fatal on failure),
one recovery pass, then the live listener and the task scheduler.
"""

import asyncio
import signal
import sys
from typing import List, Optional

import structlog

from goldstake.core.config import settings
from goldstake.core.database import init_database, close_database
from goldstake.core.exceptions import ConfigurationError, LedgerConnectionError
from goldstake.core.logging import setup_logging
from goldstake.indexer.listener import LedgerListener
from goldstake.indexer.recovery import RecoveryJob
from goldstake.scheduler.settlement_processor import build_processors
from goldstake.scheduler.task_scheduler import TaskScheduler
from goldstake.services.alert_service import AlertService, AlertLevel
from goldstake.services.authorization import VerifiedIntentGate
from goldstake.services.exchange_rate import ExchangeRateCache
from goldstake.services.intake import IntakeClassifier
from goldstake.services.xrpl_client import LedgerClient
from goldstake.utils.clock import from_unix

logger = structlog.get_logger(__name__)


class BridgeService:
    """Bridge service coordinator."""

    def __init__(self, ledger=None, alerts=None):
        self.ledger = ledger
        self.alerts = alerts
        self.rates: Optional[ExchangeRateCache] = None
        self.intake: Optional[IntakeClassifier] = None
        self.gate: Optional[VerifiedIntentGate] = None
        self.processors = {}
        self.listener: Optional[LedgerListener] = None
        self.recovery: Optional[RecoveryJob] = None
        self.task_scheduler: Optional[TaskScheduler] = None
        self.running = False
        self.tasks: List[asyncio.Task] = []

    async def initialize(self):
        """Initialize bridge components.

        Raises:
            ConfigurationError: If a pool wallet is not configured
            LedgerConnectionError: If the ledger cannot be reached
        """
        logger.info("Initializing bridge service", environment=settings.environment)

        self._check_configuration()

        await init_database()

        self.alerts = self.alerts or AlertService()
        self.ledger = self.ledger or LedgerClient()

        self.rates = ExchangeRateCache()
        await self.rates.refresh()

        await self.ledger.connect()

        self.intake = IntakeClassifier(self.ledger, self.rates, self.alerts)
        self.gate = VerifiedIntentGate()
        self.processors = build_processors(self.ledger, self.alerts)
        self.listener = LedgerListener(self.ledger, self.intake, self.alerts)
        self.recovery = RecoveryJob(self.ledger, self.intake, self.alerts)

        self.task_scheduler = TaskScheduler()
        self._register_tasks()

        logger.info("Bridge service initialized successfully")

    @staticmethod
    def _check_configuration():
        missing = [
            name for name in (
                "swap_pool_address", "swap_pool_secret", "stake_pool_address", "stake_pool_secret"
            )
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigurationError("Pool wallets are not configured", {"missing": missing})

    def _register_tasks(self):
        for queue, processor in self.processors.items():
            self.task_scheduler.register_task(
                f"{queue.value}_queue",
                processor.tick,
                interval_seconds=settings.queue_tick_interval,
                enabled=settings.scheduler_enabled,
                run_immediately=True
            )

        self.task_scheduler.register_task(
            "exchange_rate_refresh",
            self.rates.refresh,
            interval_seconds=settings.exchange_rate_refresh_interval
        )

        self.task_scheduler.register_task(
            "stale_processing_sweep",
            self.sweep_stale_processing,
            interval_seconds=settings.stale_sweep_interval,
            run_immediately=True
        )

        if settings.recovery_interval:
            self.task_scheduler.register_task(
                "periodic_recovery",
                self.run_recovery,
                interval_seconds=settings.recovery_interval
            )

    async def sweep_stale_processing(self):
        for processor in self.processors.values():
            await processor.sweep_stale_processing(settings.stale_processing_timeout)

    async def run_recovery(self):
        await self.recovery.recover_missed_transactions(
            since=from_unix(settings.recovery_since),
            limit_per_address=settings.recovery_limit
        )

    async def start(self):
        """Start the bridge service."""
        logger.info("Starting bridge service")
        self.running = True

        await self.run_recovery()

        self.tasks.append(asyncio.create_task(self.listener.start()))
        self.tasks.append(asyncio.create_task(self.task_scheduler.start()))

        logger.info("Bridge service started", accounts=settings.watched_addresses)
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def stop(self):
        """Stop the bridge service."""
        logger.info("Stopping bridge service")
        self.running = False

        if self.listener:
            await self.listener.stop()
        if self.task_scheduler:
            await self.task_scheduler.stop()

        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        if self.ledger:
            await self.ledger.close()
        if self.alerts:
            await self.alerts.drain()
        await close_database()

        logger.info("Bridge service stopped")


async def main() -> int:
    """Run the bridge service, returns the process exit code."""
    setup_logging()

    service = BridgeService()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        asyncio.create_task(service.stop())

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await service.initialize()
        await service.start()
    except LedgerConnectionError as e:
        logger.critical("Could not connect to XRPL, exiting", error=e.message)
        await service.alerts.send(AlertLevel.ERROR, f"Failed to connect to XRPL: {e.message}")
        return 1
    except Exception as e:
        logger.error("Bridge service failed", error=str(e))
        if service.alerts:
            await service.alerts.send(AlertLevel.ERROR, f"Bridge service failed: {e}")
        return 1
    finally:
        await service.stop()

    return 0


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
