"""
Live ledger listener.

Holds the subscription on the watched pool addresses and feeds every
validated payment to the intake classifier. A dropped connection is
re-established after a fixed delay and the subscription is renewed.
"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from goldstake.core.config import settings
from goldstake.services.alert_service import AlertLevel
from goldstake.services.intake import IntakeClassifier, IntakeOutcome, IntakeStatus
from goldstake.services.xrpl_client import PaymentEvent
from goldstake.utils.clock import utc_now

logger = structlog.get_logger(__name__)


@dataclass
class ListenerStats:
    """Statistics for the live listener."""
    events_received: int = 0
    payments_dispatched: int = 0
    accepted: int = 0
    rejected: int = 0
    duplicates: int = 0
    errors_encountered: int = 0
    reconnects: int = 0
    start_time: Optional[datetime] = None
    last_event_time: Optional[datetime] = None


class LedgerListener:
    """Streams validated payments from the ledger into the intake classifier."""

    def __init__(
        self,
        ledger,
        intake: IntakeClassifier,
        alerts,
        addresses: Optional[List[str]] = None,
        reconnect_delay: Optional[float] = None
    ):
        self.ledger = ledger
        self.intake = intake
        self.alerts = alerts
        self.addresses = addresses if addresses is not None else settings.watched_addresses
        self.reconnect_delay = settings.xrpl_reconnect_delay if reconnect_delay is None else reconnect_delay
        self.stats = ListenerStats()
        self.logger = logger.bind(service="ledger_listener")
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Run the listener until ``stop`` is called."""
        self.logger.info("Starting ledger listener", accounts=self.addresses)
        self._running = True
        self.stats.start_time = utc_now()
        self._task = asyncio.create_task(self._listen())
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self.logger.info("Ledger listener stopped", stats=asdict(self.stats))

    async def stop(self):
        """Stop the listener."""
        self.logger.info("Stopping ledger listener")
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def _listen(self):
        while self._running:
            try:
                async for event in self.ledger.subscribe(self.addresses):
                    await self.handle_event(event)
                    if not self._running:
                        break
                if self._running:
                    self.logger.warning("Ledger stream ended")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.errors_encountered += 1
                self.logger.error("Ledger subscription failed", error=str(e))
                self.alerts.notify(AlertLevel.ERROR, f"XRPL client error: {e}")

            if self._running:
                await self._reconnect()

    async def _reconnect(self):
        """Reconnect after the fixed back-off; the next loop re-subscribes."""
        await asyncio.sleep(self.reconnect_delay)
        self.stats.reconnects += 1
        self.logger.info("Attempting to reconnect to XRPL", attempt=self.stats.reconnects)
        try:
            await self.ledger.close()
            await self.ledger.connect()
        except Exception as e:
            self.logger.error("Failed to reconnect to XRPL", error=str(e))

    async def handle_event(self, event: PaymentEvent) -> Optional[IntakeOutcome]:
        """Dispatch one stream event. Failures are logged and alerted, never raised."""
        self.stats.events_received += 1
        self.stats.last_event_time = utc_now()

        if not event.validated or not event.is_payment:
            return None

        self.stats.payments_dispatched += 1
        try:
            outcome = await self.intake.route_payment(event)
        except Exception as e:
            self.stats.errors_encountered += 1
            self.logger.error("Failed to process ledger payment", hash=event.hash, error=str(e))
            self.alerts.notify(AlertLevel.ERROR, f"Failed to process payment {event.hash}: {e}")
            return None

        if outcome.status == IntakeStatus.ACCEPTED:
            self.stats.accepted += 1
        elif outcome.status == IntakeStatus.REJECTED:
            self.stats.rejected += 1
        elif outcome.status == IntakeStatus.DUPLICATE:
            self.stats.duplicates += 1
        return outcome

    def get_status(self) -> Dict[str, Any]:
        """Get current listener status."""
        return {
            "status": "running" if self._running else "stopped",
            "accounts": self.addresses,
            "connected": bool(getattr(self.ledger, "is_connected", False)),
            "events_received": self.stats.events_received,
            "payments_dispatched": self.stats.payments_dispatched,
            "errors_encountered": self.stats.errors_encountered,
            "reconnects": self.stats.reconnects,
            "last_event_time": self.stats.last_event_time.isoformat() if self.stats.last_event_time else None,
        }
