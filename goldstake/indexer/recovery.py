"""
Recovery job replaying ledger history the listener may have missed.

Runs once at boot (and optionally on an interval). Pages through recent
``account_tx`` history of each watched address and routes every unknown
validated payment through the intake classifier. The ledger hash unique
constraint makes replay of an already-recorded payment a no-op, the
``is_known_hash`` pre-check only saves the work.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog

from goldstake.core.config import settings
from goldstake.core.database import get_async_session
from goldstake.services.alert_service import AlertLevel
from goldstake.services.intake import IntakeClassifier, IntakeStatus, is_known_hash
from goldstake.services.xrpl_client import HISTORY_PAGE_LIMIT, PaymentEvent

logger = structlog.get_logger(__name__)


@dataclass
class RecoveryReport:
    inspected: int = 0
    replayed: int = 0
    skipped: int = 0
    errors: int = 0


class RecoveryJob:
    """Reconciles the bridge state with recent ledger history."""

    def __init__(self, ledger, intake: IntakeClassifier, alerts, addresses: Optional[List[str]] = None):
        self.ledger = ledger
        self.intake = intake
        self.alerts = alerts
        self.addresses = addresses if addresses is not None else settings.watched_addresses
        self.logger = logger.bind(service="recovery")

    async def recover_missed_transactions(
        self,
        since: Optional[datetime] = None,
        limit_per_address: Optional[int] = None
    ) -> RecoveryReport:
        """
        Replay missed payments to the watched addresses.

        Args:
            since: Ignore ledger transactions closed before this time (naive UTC)
            limit_per_address: Most recent transactions to inspect per address

        Returns:
            Counts of inspected, replayed, skipped and failed transactions
        """
        limit = settings.recovery_limit if limit_per_address is None else limit_per_address
        report = RecoveryReport()

        for address in self.addresses:
            marker = None
            fetched = 0
            while fetched < limit:
                try:
                    events, marker = await self.ledger.fetch_history(
                        address,
                        marker,
                        min(HISTORY_PAGE_LIMIT, limit - fetched)
                    )
                except Exception as e:
                    report.errors += 1
                    self.logger.error("Failed to fetch account_tx", address=address, error=str(e))
                    self.alerts.notify(AlertLevel.ERROR, f"[recover] Failed to fetch account_tx for {address}: {e}")
                    break

                if not events:
                    break

                for event in events:
                    await self._replay(event, since, report)

                fetched += len(events)
                if not marker:
                    break

        self.logger.info(
            "Recovery complete",
            inspected=report.inspected,
            replayed=report.replayed,
            skipped=report.skipped,
            errors=report.errors
        )
        return report

    async def _replay(self, event: PaymentEvent, since: Optional[datetime], report: RecoveryReport):
        report.inspected += 1

        if not event.validated or not event.is_payment:
            report.skipped += 1
            return
        if since is not None and event.date is not None and event.date < since:
            report.skipped += 1
            return

        try:
            async with get_async_session() as session:
                known = await is_known_hash(session, event.hash)
        except Exception as e:
            report.errors += 1
            self.logger.error("DB error while checking tx_hash", hash=event.hash, error=str(e))
            self.alerts.notify(AlertLevel.ERROR, f"[recover] DB error while checking tx_hash: {event.hash}, {e}")
            return

        if known:
            report.skipped += 1
            return

        try:
            outcome = await self.intake.route_payment(event)
        except Exception as e:
            report.errors += 1
            self.logger.error("Replay failed", hash=event.hash, error=str(e))
            self.alerts.notify(AlertLevel.ERROR, f"[recover] processing failed: hash={event.hash}, error={e}")
            return

        if outcome.status in (IntakeStatus.ACCEPTED, IntakeStatus.REJECTED):
            report.replayed += 1
            self.logger.info(
                "Missed payment replayed",
                hash=event.hash,
                account=event.source_account,
                amount=str(event.amount),
                outcome=outcome.status.value
            )
        else:
            report.skipped += 1
