"""
Test reward accrual, rollover and reward pool administration.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from goldstake.core.config import settings, LedgerConfig
from goldstake.core.database import get_async_session
from goldstake.core.exceptions import RewardPoolConflictError, RewardPoolNotFoundError
from goldstake.models.stake import StakeAccount, RewardPool, RewardPoolStatus
from goldstake.services.alert_service import AlertLevel
from goldstake.services.rewards import (
    RolloverMode,
    accumulated_reward,
    get_accumulated_reward,
    open_reward_pool,
    rollover_reward_pool,
)
from goldstake.utils.clock import utc_now
from tests.fakes import USER, OTHER_USER

PERIOD_START = datetime(2025, 1, 1)


def make_pool(start=PERIOD_START, days=30):
    return RewardPool(
        stake_token=settings.stake_token,
        reward_token=LedgerConfig.reward_token(),
        period_start=start,
        duration_days=days,
        total_reward=Decimal("100"),
        status=RewardPoolStatus.ACTIVE,
    )


def make_account(staked="100", pocket="0", updated_at=PERIOD_START, last_claim_at=PERIOD_START, address=USER):
    return StakeAccount(
        xrpl_address=address,
        staked_amount=Decimal(staked),
        pocket_reward=Decimal(pocket),
        updated_at=updated_at,
        created_at=updated_at,
        last_claim_at=last_claim_at,
    )


def test_one_day_of_accrual_at_fixed_apr():
    """100 staked for exactly one day at 72% APR."""
    account = make_account()
    reward = accumulated_reward(account, make_pool(), PERIOD_START + timedelta(seconds=86400))
    assert reward == Decimal("0.197260")


def test_no_active_pool_returns_pocket_reward():
    account = make_account(pocket="1.5")
    assert accumulated_reward(account, None, PERIOD_START + timedelta(days=3)) == Decimal("1.5")


def test_zero_principal_returns_pocket_reward():
    account = make_account(staked="0", pocket="0.25")
    assert accumulated_reward(account, make_pool(), PERIOD_START + timedelta(days=3)) == Decimal("0.25")


def test_accrual_stops_at_period_end():
    account = make_account()
    pool = make_pool(days=1)
    at_end = accumulated_reward(account, pool, PERIOD_START + timedelta(days=1))
    later = accumulated_reward(account, pool, PERIOD_START + timedelta(days=10))
    assert at_end == later == Decimal("0.197260")


def test_accrual_starts_at_latest_baseline():
    """A recent claim moves the start of the window."""
    claimed_at = PERIOD_START + timedelta(days=2)
    account = make_account(last_claim_at=claimed_at)
    assert accumulated_reward(account, make_pool(), claimed_at) == Decimal("0")
    assert accumulated_reward(account, make_pool(), claimed_at + timedelta(days=1)) == Decimal("0.197260")


def test_baseline_after_now_accrues_nothing():
    account = make_account(pocket="0.5", updated_at=PERIOD_START + timedelta(days=5))
    assert accumulated_reward(account, make_pool(), PERIOD_START + timedelta(days=1)) == Decimal("0.5")


def test_accrual_is_monotonic_in_time():
    account = make_account(staked="37.123456", pocket="0.000001")
    pool = make_pool()
    values = [
        accumulated_reward(account, pool, PERIOD_START + timedelta(hours=h))
        for h in range(0, 24 * 31, 7)
    ]
    assert values == sorted(values)
    assert all(v == v.quantize(Decimal("0.000001")) for v in values)


@pytest.mark.asyncio
async def test_unknown_account_has_zero_reward(db):
    async with get_async_session() as session:
        assert await get_accumulated_reward(session, USER) == Decimal("0")


@pytest.mark.asyncio
async def test_accumulated_reward_uses_active_pool(db):
    async with get_async_session() as session:
        session.add(make_pool())
        session.add(make_account())

    async with get_async_session() as session:
        reward = await get_accumulated_reward(session, USER, PERIOD_START + timedelta(days=1))
    assert reward == Decimal("0.197260")


@pytest.mark.asyncio
async def test_rollover_snapshot_keeps_pool_active(db):
    now = utc_now()
    async with get_async_session() as session:
        session.add(make_pool(start=now - timedelta(days=2)))
        session.add(make_account(updated_at=now - timedelta(days=1), last_claim_at=now - timedelta(days=1)))
        session.add(make_account(
            address=OTHER_USER,
            staked="0",
            pocket="3",
            updated_at=now - timedelta(days=1),
            last_claim_at=now - timedelta(days=1),
        ))

    result = await rollover_reward_pool(RolloverMode.SNAPSHOT)

    assert result.updated_count == 2
    assert result.mode == RolloverMode.SNAPSHOT
    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
        other = await session.get(StakeAccount, OTHER_USER)
        pools = (await session.execute(select(RewardPool))).scalars().all()

    assert account.pocket_reward >= Decimal("0.197260")
    assert account.updated_at >= now
    assert other.pocket_reward == Decimal("3")
    assert len(pools) == 1 and pools[0].status == RewardPoolStatus.ACTIVE


@pytest.mark.asyncio
async def test_rollover_end_closes_pool_and_preserves_reward(db, alerts):
    now = utc_now()
    async with get_async_session() as session:
        session.add(make_pool(start=now - timedelta(days=2)))
        session.add(make_account(updated_at=now - timedelta(days=1), last_claim_at=now - timedelta(days=1)))

    result = await rollover_reward_pool(RolloverMode.END, alerts=alerts)

    assert result.updated_count == 1
    async with get_async_session() as session:
        pool = (await session.execute(select(RewardPool))).scalar_one()
        assert pool.status == RewardPoolStatus.ENDED
        # With the pool ended, the reward is exactly what rollover stored
        stored = (await session.get(StakeAccount, USER)).pocket_reward
        assert await get_accumulated_reward(session, USER) == stored
    assert stored >= Decimal("0.197260")
    assert alerts.sent == []


@pytest.mark.asyncio
async def test_rollover_without_active_pool_alerts_and_raises(db, alerts):
    with pytest.raises(RewardPoolNotFoundError):
        await rollover_reward_pool(RolloverMode.END, alerts=alerts)

    assert alerts.at(AlertLevel.ERROR) == ["No active reward pool"]


@pytest.mark.asyncio
async def test_open_reward_pool_refuses_second_active_pool(db):
    pool = await open_reward_pool(PERIOD_START, 30, Decimal("100"))
    assert pool.is_active
    assert pool.period_end == PERIOD_START + timedelta(days=30)

    with pytest.raises(RewardPoolConflictError):
        await open_reward_pool(PERIOD_START, 30, Decimal("50"))


@pytest.mark.asyncio
async def test_open_reward_pool_after_previous_ended(db):
    first = await open_reward_pool(PERIOD_START, 30, Decimal("100"))
    async with get_async_session() as session:
        ended = await session.get(RewardPool, first.id)
        ended.status = RewardPoolStatus.ENDED

    second = await open_reward_pool(PERIOD_START + timedelta(days=30), 30, Decimal("100"))
    assert second.id != first.id


@pytest.mark.asyncio
async def test_rollover_never_moves_baseline_backwards(db):
    """An account written after rollover started keeps its later baseline."""
    now = utc_now()
    later = now + timedelta(hours=1)
    async with get_async_session() as session:
        session.add(make_pool(start=now - timedelta(days=2)))
        session.add(make_account(pocket="1", updated_at=later, last_claim_at=now - timedelta(days=1)))

    await rollover_reward_pool(RolloverMode.SNAPSHOT)

    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
    assert account.updated_at >= later
    assert account.pocket_reward == Decimal("1")
