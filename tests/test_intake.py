"""
Test classification of inbound pool payments.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from goldstake.core.config import settings, LedgerConfig
from goldstake.core.database import get_async_session
from goldstake.models.settlement import SwapRequest, RequestStatus
from goldstake.models.stake import StakeAccount, RewardPool, RewardPoolStatus
from goldstake.models.transaction import TransactionRecord, TransactionType
from goldstake.services.alert_service import AlertLevel
from goldstake.services.intake import IntakeStatus, RejectionReason, is_known_hash
from goldstake.utils.clock import utc_now
from tests.fakes import USER, tx_hash, make_payment, stake_payment, swap_payment

REWARD = LedgerConfig.reward_token()
STAKE = settings.stake_token


async def count(model) -> int:
    async with get_async_session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


@pytest.mark.asyncio
async def test_stake_creates_account_and_audit_record(db, intake):
    outcome = await intake.route_payment(stake_payment(1, "100"))

    assert outcome.status == IntakeStatus.ACCEPTED
    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
        record = (await session.execute(select(TransactionRecord))).scalar_one()
    assert account.staked_amount == Decimal("100")
    assert account.pocket_reward == Decimal("0")
    assert account.last_claim_at is not None
    assert record.tx_type == TransactionType.STAKE
    assert record.tx_hash == tx_hash(1)
    assert record.symbol == STAKE


@pytest.mark.asyncio
async def test_stake_below_minimum_is_rejected_without_state(db, intake, alerts):
    outcome = await intake.route_payment(stake_payment(1, "0.5"))

    assert outcome.status == IntakeStatus.REJECTED
    assert outcome.reason == RejectionReason.AMOUNT_TOO_SMALL.value
    assert await count(StakeAccount) == 0
    assert await count(TransactionRecord) == 0
    assert len(alerts.at(AlertLevel.WARN)) == 1


@pytest.mark.asyncio
async def test_additional_stake_keeps_accrued_reward(db, intake):
    """Topping up settles the reward earned on the old principal first."""
    now = utc_now()
    async with get_async_session() as session:
        session.add(RewardPool(
            stake_token=STAKE,
            reward_token=REWARD,
            period_start=now - timedelta(days=10),
            duration_days=30,
            total_reward=Decimal("100"),
            status=RewardPoolStatus.ACTIVE,
        ))
        session.add(StakeAccount(
            xrpl_address=USER,
            staked_amount=Decimal("100"),
            pocket_reward=Decimal("0"),
            updated_at=now - timedelta(days=1),
            last_claim_at=now - timedelta(days=1),
        ))

    await intake.route_payment(stake_payment(1, "50"))

    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
    assert account.staked_amount == Decimal("150")
    assert account.pocket_reward >= Decimal("0.197260")
    assert account.updated_at >= now


@pytest.mark.asyncio
async def test_replayed_stake_is_duplicate(db, intake):
    await intake.route_payment(stake_payment(1, "100"))
    outcome = await intake.route_payment(stake_payment(1, "100"))

    assert outcome.status == IntakeStatus.DUPLICATE
    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
    assert account.staked_amount == Decimal("100")
    assert await count(TransactionRecord) == 1


@pytest.mark.asyncio
async def test_swap_reward_token_for_stake_token(db, intake, ledger, rates):
    rates.set_rate(settings.exchange_rate_pair, Decimal("0.05"))
    ledger.grant_trust_line(USER, STAKE)

    outcome = await intake.route_payment(swap_payment(1, REWARD, "1.234567"))

    assert outcome.status == IntakeStatus.ACCEPTED
    async with get_async_session() as session:
        request = await session.get(SwapRequest, outcome.request_id)
        record = (await session.execute(select(TransactionRecord))).scalar_one()
    assert request.status == RequestStatus.PENDING
    assert request.send_token == STAKE
    assert request.send_amount == Decimal("24.691340")
    assert request.receive_amount == Decimal("1.234567")
    assert request.source_tx_hash == tx_hash(1)
    assert record.tx_type == TransactionType.SWAP_IN


@pytest.mark.asyncio
async def test_swap_stake_token_for_reward_token_pays_fee(db, intake, ledger):
    ledger.grant_trust_line(USER, REWARD)

    outcome = await intake.route_payment(swap_payment(1, STAKE, "10"))

    assert outcome.status == IntakeStatus.ACCEPTED
    async with get_async_session() as session:
        request = await session.get(SwapRequest, outcome.request_id)
    assert request.send_token == REWARD
    # 10 * 2 - 0.05
    assert request.send_amount == Decimal("19.95")


@pytest.mark.asyncio
@pytest.mark.parametrize("currency, amount, trust, rate, reason", [
    (REWARD, "5", False, "2", RejectionReason.NO_GPC_TRUSTLINE),
    (STAKE, "5", False, "2", RejectionReason.NO_RLUSD_TRUSTLINE),
    (REWARD, "0.05", True, "2", RejectionReason.AMOUNT_TOO_SMALL),
    (STAKE, "0.05", True, "2", RejectionReason.OUT_OF_RANGE_AMOUNT),
    (STAKE, "1000.5", True, "2", RejectionReason.OUT_OF_RANGE_AMOUNT),
    (REWARD, "5", True, "0", RejectionReason.INVALID_EXCHANGE_RATE),
    (STAKE, "5", True, "0", RejectionReason.INVALID_EXCHANGE_RATE),
    (STAKE, "0.1", True, "0.5", RejectionReason.AMOUNT_TOO_SMALL),
])
async def test_swap_rejections_are_recorded_as_failed(db, intake, ledger, rates, alerts, currency, amount, trust, rate, reason):
    rates.set_rate(settings.exchange_rate_pair, Decimal(rate))
    if trust:
        ledger.grant_trust_line(USER, STAKE)
        ledger.grant_trust_line(USER, REWARD)

    outcome = await intake.route_payment(swap_payment(1, currency, amount))

    assert outcome.status == IntakeStatus.REJECTED
    assert outcome.reason == reason.value
    async with get_async_session() as session:
        request = await session.get(SwapRequest, outcome.request_id)
        assert await is_known_hash(session, tx_hash(1))
    assert request.status == RequestStatus.FAILED
    assert request.fail_reason == reason.value
    assert request.send_amount == Decimal("0")
    assert await count(TransactionRecord) == 0
    assert len(alerts.at(AlertLevel.WARN)) == 1


@pytest.mark.asyncio
async def test_replayed_rejected_swap_is_duplicate(db, intake):
    await intake.route_payment(swap_payment(1, REWARD, "5"))
    outcome = await intake.route_payment(swap_payment(1, REWARD, "5"))

    assert outcome.status == IntakeStatus.DUPLICATE
    assert await count(SwapRequest) == 1


@pytest.mark.asyncio
async def test_replayed_swap_is_duplicate(db, intake, ledger):
    ledger.grant_trust_line(USER, STAKE)
    await intake.route_payment(swap_payment(1, REWARD, "5"))
    outcome = await intake.route_payment(swap_payment(1, REWARD, "5"))

    assert outcome.status == IntakeStatus.DUPLICATE
    assert await count(SwapRequest) == 1
    assert await count(TransactionRecord) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("event", [
    stake_payment(1, "100", validated=False),
    stake_payment(1, "100", transaction_type="TrustSet"),
    stake_payment(1, "100", issuer="rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"),
    make_payment(1, settings.stake_pool_address, REWARD, "100"),
    make_payment(1, USER, STAKE, "100"),
    make_payment(1, settings.swap_pool_address, "XRP", "100", issuer=""),
])
async def test_route_ignores_unrelated_events(db, intake, event):
    outcome = await intake.route_payment(event)

    assert outcome.status == IntakeStatus.IGNORED
    assert await count(StakeAccount) == 0
    assert await count(SwapRequest) == 0
