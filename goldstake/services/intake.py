"""
Intake classifier: turns validated inbound ledger payments into durable
bridge state.

- Stake pool + stake token: credit the stake account
- Swap pool + reward token: queue a stake-token payout
- Swap pool + stake token: queue a reward-token payout

Every accepted payment writes a ``TransactionRecord`` keyed by its ledger
hash in the same transaction as the state change, so replaying the same
payment is a no-op.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import select, exists, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from goldstake.core.config import settings, LedgerConfig
from goldstake.core.database import get_async_session
from goldstake.models.settlement import RequestStatus, SwapRequest
from goldstake.models.stake import StakeAccount
from goldstake.models.transaction import TransactionRecord, TransactionType
from goldstake.services.alert_service import AlertLevel
from goldstake.services.exchange_rate import ExchangeRateCache
from goldstake.services.rewards import snapshot_account
from goldstake.services.xrpl_client import PaymentEvent
from goldstake.utils.amounts import truncate_amount
from goldstake.utils.clock import utc_now

logger = structlog.get_logger(__name__)


class IntakeStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class RejectionReason(str, Enum):
    NO_GPC_TRUSTLINE = "no_gpc_trustline"
    NO_RLUSD_TRUSTLINE = "no_rlusd_trustline"
    AMOUNT_TOO_SMALL = "amount_too_small"
    OUT_OF_RANGE_AMOUNT = "out_of_range_amount"
    INVALID_EXCHANGE_RATE = "invalid_exchange_rate"


@dataclass
class IntakeOutcome:
    """What the classifier did with one payment."""
    status: IntakeStatus
    reason: Optional[str] = None
    request_id: Optional[int] = None


async def is_known_hash(session: AsyncSession, tx_hash: str) -> bool:
    """True when the hash is already in the audit ledger or backs a swap request."""
    result = await session.execute(
        select(
            or_(
                exists().where(TransactionRecord.tx_hash == tx_hash),
                exists().where(SwapRequest.source_tx_hash == tx_hash),
            )
        )
    )
    return bool(result.scalar())


class IntakeClassifier:
    """Classifies inbound payments into stake credits and swap requests."""

    def __init__(self, ledger, rates: ExchangeRateCache, alerts):
        self.ledger = ledger
        self.rates = rates
        self.alerts = alerts
        self.logger = logger.bind(service="intake")

    async def route_payment(self, event: PaymentEvent) -> IntakeOutcome:
        """
        Pick the intake path for a ledger event from destination, currency
        and issuer. Anything that is not a validated payment of a bridged
        token to a watched address is ignored.
        """
        if not event.validated or not event.is_payment:
            return IntakeOutcome(IntakeStatus.IGNORED)

        stake_token = settings.stake_token
        reward_token = LedgerConfig.reward_token()
        is_stake_token = event.currency == stake_token and event.issuer == settings.stake_token_issuer
        is_reward_token = event.currency == reward_token and event.issuer == LedgerConfig.reward_token_issuer()

        if event.destination == settings.swap_pool_address and (is_stake_token or is_reward_token):
            self.logger.info("[SWAP] Received a validated payment", hash=event.hash)
            return await self.classify_incoming_payment(event, event.currency)

        if event.destination == settings.stake_pool_address and is_stake_token:
            self.logger.info("[STAKE] Received a validated payment", hash=event.hash)
            return await self.classify_incoming_payment(event, event.currency)

        return IntakeOutcome(IntakeStatus.IGNORED)

    async def classify_incoming_payment(self, event: PaymentEvent, declared_currency: str) -> IntakeOutcome:
        """Dispatch a payment whose token has already been checked."""
        if event.destination == settings.stake_pool_address:
            return await self.handle_stake_payment(event, declared_currency)
        if event.destination == settings.swap_pool_address:
            return await self.handle_swap_payment(event, declared_currency)
        return IntakeOutcome(IntakeStatus.IGNORED)

    async def handle_stake_payment(self, event: PaymentEvent, currency: str) -> IntakeOutcome:
        """Credit staked principal for a payment into the stake pool."""
        account_address = event.source_account
        amount = truncate_amount(event.amount)
        self.logger.info("Handling STAKE", account=account_address, amount=str(amount), hash=event.hash)

        if amount < settings.min_stake_amount:
            message = f"Stake failed: Amount must be at least {settings.min_stake_amount} {settings.stake_token}."
            self.logger.warning(message, account=account_address, amount=str(amount), hash=event.hash)
            self.alerts.notify(AlertLevel.WARN, f"{message} ({account_address}, {amount}, {event.hash})")
            return IntakeOutcome(IntakeStatus.REJECTED, reason=RejectionReason.AMOUNT_TOO_SMALL.value)

        try:
            async with get_async_session() as session:
                now = utc_now()
                account = await session.get(StakeAccount, account_address, with_for_update=True)
                if account is None:
                    account = StakeAccount(
                        xrpl_address=account_address,
                        staked_amount=Decimal("0"),
                        pocket_reward=Decimal("0"),
                        last_claim_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(account)
                else:
                    await snapshot_account(session, account, now)

                account.staked_amount = truncate_amount(account.staked_amount + amount)
                session.add(TransactionRecord(
                    xrpl_address=account_address,
                    tx_type=TransactionType.STAKE,
                    amount=amount,
                    symbol=currency,
                    tx_hash=event.hash,
                    created_at=now,
                ))
                await session.flush()
        except IntegrityError as e:
            return await self._duplicate_or_raise(event, e)

        self.logger.info("Stake recorded", account=account_address, amount=str(amount), hash=event.hash)
        return IntakeOutcome(IntakeStatus.ACCEPTED)

    async def handle_swap_payment(self, event: PaymentEvent, currency: str) -> IntakeOutcome:
        """Price a swap and queue the outbound leg, or record the rejection."""
        account_address = event.source_account
        amount = truncate_amount(event.amount)
        stake_token = settings.stake_token
        reward_token = LedgerConfig.reward_token()
        rate = self.rates.current_rate()
        reason: Optional[RejectionReason] = None
        send_amount = Decimal("0")

        self.logger.info("Handling SWAP", account=account_address, amount=str(amount), token=currency, hash=event.hash)

        if currency == reward_token:
            send_token = stake_token
            if not await self.ledger.has_trust_line(account_address, stake_token, settings.stake_token_issuer):
                reason = RejectionReason.NO_GPC_TRUSTLINE
            elif amount < settings.min_swap_amount:
                reason = RejectionReason.AMOUNT_TOO_SMALL
            elif rate <= 0:
                reason = RejectionReason.INVALID_EXCHANGE_RATE
            else:
                send_amount = truncate_amount(amount / rate)
                if send_amount <= 0:
                    reason = RejectionReason.AMOUNT_TOO_SMALL

        elif currency == stake_token:
            send_token = reward_token
            if not await self.ledger.has_trust_line(account_address, reward_token, LedgerConfig.reward_token_issuer()):
                reason = RejectionReason.NO_RLUSD_TRUSTLINE
            elif amount < settings.min_swap_amount or amount > settings.max_swap_stake_amount:
                reason = RejectionReason.OUT_OF_RANGE_AMOUNT
            elif rate <= 0:
                reason = RejectionReason.INVALID_EXCHANGE_RATE
            else:
                send_amount = truncate_amount(amount * rate - settings.swap_fee)
                if send_amount <= 0:
                    reason = RejectionReason.AMOUNT_TOO_SMALL

        else:
            return IntakeOutcome(IntakeStatus.IGNORED)

        request = SwapRequest(
            account=account_address,
            receive_token=currency,
            receive_amount=amount,
            send_token=send_token,
            send_amount=send_amount if reason is None else Decimal("0"),
            status=RequestStatus.PENDING if reason is None else RequestStatus.FAILED,
            fail_reason=reason.value if reason is not None else None,
            source_tx_hash=event.hash,
        )

        try:
            async with get_async_session() as session:
                session.add(request)
                if reason is None:
                    session.add(TransactionRecord(
                        xrpl_address=account_address,
                        tx_type=TransactionType.SWAP_IN,
                        amount=amount,
                        symbol=currency,
                        tx_hash=event.hash,
                    ))
                await session.flush()
        except IntegrityError as e:
            return await self._duplicate_or_raise(event, e)

        if reason is not None:
            message = f"Swap failed: {reason.value} ({account_address}, {amount} {currency})"
            self.logger.warning(message, request_id=request.id, hash=event.hash)
            self.alerts.notify(AlertLevel.WARN, message)
            return IntakeOutcome(IntakeStatus.REJECTED, reason=reason.value, request_id=request.id)

        self.logger.info(
            "Swap queued",
            request_id=request.id,
            account=account_address,
            receive=f"{amount} {currency}",
            send=f"{send_amount} {send_token}"
        )
        return IntakeOutcome(IntakeStatus.ACCEPTED, request_id=request.id)

    async def _duplicate_or_raise(self, event: PaymentEvent, error: IntegrityError) -> IntakeOutcome:
        async with get_async_session() as session:
            known = await is_known_hash(session, event.hash)
        if not known:
            raise error
        self.logger.info("Duplicate ledger hash, nothing recorded", hash=event.hash)
        return IntakeOutcome(IntakeStatus.DUPLICATE)
