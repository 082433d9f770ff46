"""
Settlement queue processors for swap, unstake and claim requests.

Each tick settles at most one request, oldest first:

1. Lock the oldest pending row and flip it to ``processing`` with a guarded
   update, then commit so the claim is durable before any money moves.
2. Submit the outbound transfer and wait for ledger finality outside any
   database transaction.
3. Record the outcome: ``completed`` plus an audit record keyed by the
   outbound hash, or ``failed`` with the ledger result code.

Rows left in ``processing`` by a crash between 1 and 3 are failed by
``sweep_stale_processing``; they are never requeued because the transfer
may already be final on the ledger.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Type

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from goldstake.core.config import settings, LedgerConfig
from goldstake.core.database import get_async_session
from goldstake.models.settlement import (
    QueueType,
    RequestStatus,
    SettlementRequestMixin,
    SwapRequest,
    UnstakeRequest,
    ClaimRequest,
)
from goldstake.models.transaction import TransactionRecord, TransactionType
from goldstake.services.alert_service import AlertLevel
from goldstake.utils.clock import utc_now

logger = structlog.get_logger(__name__)

PROCESSING_TIMEOUT_REASON = "processing_timeout"


async def mark_processing(session: AsyncSession, model: Type[SettlementRequestMixin], request_id: int) -> bool:
    """Guarded ``pending -> processing`` transition. False when another worker won."""
    result = await session.execute(
        update(model)
        .where(model.id == request_id, model.status == RequestStatus.PENDING)
        .values(status=RequestStatus.PROCESSING, processing_started_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def claim_next(model: Type[SettlementRequestMixin]) -> Optional[SettlementRequestMixin]:
    """Claim the oldest pending request of a queue, or None when idle or beaten."""
    async with get_async_session() as session:
        result = await session.execute(
            select(model)
            .where(model.status == RequestStatus.PENDING)
            .order_by(model.id)
            .limit(1)
            .with_for_update()
        )
        request = result.scalar_one_or_none()
        if request is None:
            return None

        if not await mark_processing(session, model, request.id):
            return None

    return request


class SettlementProcessor:
    """Processes one settlement queue.

    Ticks of one processor never overlap inside a process; separate
    processes are kept apart by the row lock and the guarded update.
    """

    def __init__(
        self,
        name: str,
        model: Type[SettlementRequestMixin],
        tx_type: TransactionType,
        ledger,
        alerts,
        sender_secret: Callable[[], str],
        issuer_for: Callable[[str], str] = LedgerConfig.issuer_for
    ):
        self.name = name
        self.model = model
        self.tx_type = tx_type
        self.ledger = ledger
        self.alerts = alerts
        self.sender_secret = sender_secret
        self.issuer_for = issuer_for
        self._lock = asyncio.Lock()
        self.processed_count = 0
        self.failed_count = 0
        self.logger = logger.bind(service="settlement_processor", queue=name)

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def tick(self) -> Optional[RequestStatus]:
        """
        Settle the oldest pending request.

        Returns:
            The terminal status reached, or None when nothing was settled
            (idle queue, lost race, or a tick already running)
        """
        if self._lock.locked():
            self.logger.debug("Previous tick still running, skipping")
            return None

        async with self._lock:
            request = await claim_next(self.model)
            if request is None:
                return None

            self.logger.info(
                "Processing request",
                request_id=request.id,
                account=request.account,
                amount=str(request.send_amount),
                token=request.send_token
            )

            try:
                result = await self.ledger.submit_transfer(
                    self.sender_secret(),
                    request.account,
                    request.send_token,
                    self.issuer_for(request.send_token),
                    Decimal(request.send_amount),
                )
            except Exception as e:
                await self._mark_failed(request, str(e) or type(e).__name__)
                return RequestStatus.FAILED

            if not result.success:
                await self._mark_failed(request, result.failure_code or "Unknown XRPL error")
                return RequestStatus.FAILED

            await self._mark_completed(request, result.hash)
            return RequestStatus.COMPLETED

    async def _finish(self, request: SettlementRequestMixin, session: AsyncSession, **values) -> bool:
        """Guarded ``processing -> terminal`` transition. False when the row already left processing."""
        result = await session.execute(
            update(self.model)
            .where(self.model.id == request.id, self.model.status == RequestStatus.PROCESSING)
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _report_lost_row(self, request: SettlementRequestMixin, outcome: str) -> None:
        self.logger.error("Request left processing before settlement finished", request_id=request.id, outcome=outcome)
        self.alerts.notify(
            AlertLevel.ERROR,
            f"{self.name.capitalize()} request ID: {request.id} was no longer processing when its transfer "
            f"finished ({outcome}); status left unchanged"
        )

    async def _mark_completed(self, request: SettlementRequestMixin, tx_hash: str) -> None:
        async with get_async_session() as session:
            updated = await self._finish(request, session, status=RequestStatus.COMPLETED)
            # The transfer is final on the ledger either way
            session.add(TransactionRecord(
                xrpl_address=request.account,
                tx_type=self.tx_type,
                amount=request.send_amount,
                symbol=request.send_token,
                tx_hash=tx_hash,
                created_at=utc_now(),
            ))

        self.processed_count += 1
        if not updated:
            self._report_lost_row(request, f"completed as {tx_hash}")
            return
        self.logger.info("Request completed", request_id=request.id, hash=tx_hash)

    async def _mark_failed(self, request: SettlementRequestMixin, reason: str) -> None:
        async with get_async_session() as session:
            updated = await self._finish(request, session, status=RequestStatus.FAILED, fail_reason=reason)

        self.failed_count += 1
        if not updated:
            self._report_lost_row(request, f"failed with {reason}")
            return
        message = f"{self.name.capitalize()} request ID: {request.id} failed with error: {reason}"
        self.logger.error("Request failed", request_id=request.id, reason=reason)
        self.alerts.notify(AlertLevel.ERROR, message)

    async def sweep_stale_processing(self, timeout_seconds: int, now: Optional[datetime] = None) -> List[int]:
        """
        Fail requests that have sat in ``processing`` longer than the timeout.

        Returns:
            Ids of the requests that were failed
        """
        cutoff = (now or utc_now()) - timedelta(seconds=timeout_seconds)

        async with get_async_session() as session:
            result = await session.execute(
                select(self.model.id)
                .where(
                    self.model.status == RequestStatus.PROCESSING,
                    self.model.processing_started_at < cutoff,
                )
                .order_by(self.model.id)
                .with_for_update()
            )
            stale_ids = list(result.scalars().all())
            if stale_ids:
                await session.execute(
                    update(self.model)
                    .where(
                        self.model.id.in_(stale_ids),
                        self.model.status == RequestStatus.PROCESSING,
                    )
                    .values(
                        status=RequestStatus.FAILED,
                        fail_reason=PROCESSING_TIMEOUT_REASON,
                        updated_at=utc_now(),
                    )
                    .execution_options(synchronize_session=False)
                )

        for request_id in stale_ids:
            self.logger.error("Request stuck in processing, marked failed", request_id=request_id)
            self.alerts.notify(
                AlertLevel.ERROR,
                f"{self.name.capitalize()} request ID: {request_id} stuck in processing, marked failed; "
                "check the ledger before refunding"
            )
        return stale_ids


def build_processors(ledger, alerts) -> Dict[QueueType, SettlementProcessor]:
    """Wire the three queues to their wallets and audit types."""
    return {
        QueueType.SWAP: SettlementProcessor(
            name=QueueType.SWAP.value,
            model=SwapRequest,
            tx_type=TransactionType.SWAP_OUT,
            ledger=ledger,
            alerts=alerts,
            sender_secret=lambda: settings.swap_pool_secret,
        ),
        QueueType.UNSTAKE: SettlementProcessor(
            name=QueueType.UNSTAKE.value,
            model=UnstakeRequest,
            tx_type=TransactionType.UNSTAKE,
            ledger=ledger,
            alerts=alerts,
            sender_secret=lambda: settings.stake_pool_secret,
        ),
        QueueType.CLAIM: SettlementProcessor(
            name=QueueType.CLAIM.value,
            model=ClaimRequest,
            tx_type=TransactionType.CLAIM,
            ledger=ledger,
            alerts=alerts,
            sender_secret=lambda: settings.stake_pool_secret,
        ),
    }
