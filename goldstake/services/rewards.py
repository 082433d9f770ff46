"""
Reward accrual engine.

Rewards accrue linearly at a fixed APR on the staked principal for the time
an account spends inside the active reward pool's period:

    reward = pocket_reward + staked_amount * apr / 365 / 86400 * seconds

where ``seconds`` runs from ``max(updated_at, last_claim_at, period_start)``
to ``min(now, period_end)``. Rollover folds the accrued value into
``pocket_reward`` and moves the baseline to now.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from goldstake.core.config import settings, LedgerConfig
from goldstake.core.database import get_async_session
from goldstake.core.exceptions import RewardPoolConflictError, RewardPoolNotFoundError, ValidationError
from goldstake.models.stake import StakeAccount, RewardPool, RewardPoolStatus
from goldstake.services.alert_service import AlertLevel
from goldstake.utils.amounts import truncate_amount
from goldstake.utils.clock import utc_now, to_naive_utc

logger = structlog.get_logger(__name__)

SECONDS_PER_YEAR = Decimal(365 * 86400)


class RolloverMode(str, Enum):
    END = "end"
    SNAPSHOT = "snapshot"


@dataclass
class RolloverResult:
    updated_count: int
    mode: RolloverMode


def accumulated_reward(
    account: StakeAccount,
    pool: Optional[RewardPool],
    now: datetime,
    apr: Optional[Decimal] = None
) -> Decimal:
    """
    Compute the reward an account has accrued up to ``now``.

    Pure function: reads the account and pool, writes nothing.

    Args:
        account: Stake account
        pool: Active reward pool, None when no pool is running
        now: Evaluation time (naive UTC)
        apr: Annual rate, defaults to ``settings.reward_apr``

    Returns:
        Pocket reward plus accrual since the baseline, floored to 6 places
    """
    pocket = Decimal(account.pocket_reward or 0)
    if pool is None:
        return truncate_amount(pocket)

    apr = settings.reward_apr if apr is None else apr
    principal = Decimal(account.staked_amount or 0)

    start = max(d for d in (account.updated_at, account.last_claim_at, pool.period_start) if d is not None)
    end = min(now, pool.period_end)
    seconds = Decimal(str((end - start).total_seconds()))

    if seconds <= 0 or principal <= 0:
        return truncate_amount(pocket)

    return truncate_amount(pocket + principal * apr / SECONDS_PER_YEAR * seconds)


async def get_active_pool(
    session: AsyncSession,
    stake_token: Optional[str] = None,
    reward_token: Optional[str] = None
) -> Optional[RewardPool]:
    """Latest active pool for the configured (stake, reward) pair."""
    result = await session.execute(
        select(RewardPool)
        .where(
            RewardPool.status == RewardPoolStatus.ACTIVE,
            RewardPool.stake_token == (stake_token or settings.stake_token),
            RewardPool.reward_token == (reward_token or LedgerConfig.reward_token()),
        )
        .order_by(RewardPool.period_start.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_accumulated_reward(
    session: AsyncSession,
    address: str,
    now: Optional[datetime] = None
) -> Decimal:
    """Accrued reward for ``address``; zero for an unknown account."""
    account = await session.get(StakeAccount, address)
    if account is None:
        return Decimal("0")
    pool = await get_active_pool(session)
    return accumulated_reward(account, pool, now or utc_now())


async def snapshot_account(
    session: AsyncSession,
    account: StakeAccount,
    now: datetime,
    pool: Optional[RewardPool] = None
) -> Decimal:
    """Fold accrued reward into ``pocket_reward`` and move the baseline to ``now``.

    The baseline only moves forward: an account written after ``now`` keeps
    its later ``updated_at``.

    Callers must hold the account row (``with_for_update``) so the value
    written matches the value read.
    """
    if pool is None:
        pool = await get_active_pool(session)
    reward = accumulated_reward(account, pool, now)
    account.pocket_reward = reward
    if account.updated_at is None or account.updated_at < now:
        account.updated_at = now
    return reward


async def rollover_reward_pool(mode: RolloverMode = RolloverMode.END, alerts=None) -> RolloverResult:
    """
    Settle every account's accrued reward into ``pocket_reward``.

    Each account is written in its own transaction, so an interrupted run
    leaves a prefix of accounts rolled over. ``end`` also closes the pool;
    ``snapshot`` leaves it active.

    Raises:
        RewardPoolNotFoundError: If no pool is active
    """
    mode = RolloverMode(mode)
    log = logger.bind(service="rewards", mode=mode.value)

    async with get_async_session() as session:
        pool = await get_active_pool(session)
        if pool is None:
            if alerts is not None:
                alerts.notify(AlertLevel.ERROR, "No active reward pool")
            raise RewardPoolNotFoundError(settings.stake_token, LedgerConfig.reward_token())
        addresses = (await session.execute(select(StakeAccount.xrpl_address))).scalars().all()

    now = utc_now()
    updated_count = 0
    for address in addresses:
        async with get_async_session() as session:
            account = await session.get(StakeAccount, address, with_for_update=True)
            if account is None:
                continue
            reward = await snapshot_account(session, account, now, pool)
        updated_count += 1
        log.debug("Account rolled over", address=address, pocket_reward=str(reward))

    if mode == RolloverMode.END:
        async with get_async_session() as session:
            ended = await session.get(RewardPool, pool.id, with_for_update=True)
            ended.status = RewardPoolStatus.ENDED
            ended.updated_at = now

    log.info("Reward pool rollover complete", pool_id=pool.id, updated_count=updated_count)
    return RolloverResult(updated_count=updated_count, mode=mode)


async def open_reward_pool(
    period_start: datetime,
    duration_days: int,
    total_reward: Decimal,
    stake_token: Optional[str] = None,
    reward_token: Optional[str] = None
) -> RewardPool:
    """
    Create the active reward pool for a token pair.

    Raises:
        ValidationError: If the duration is not positive
        RewardPoolConflictError: If the pair already has an active pool
    """
    stake_token = stake_token or settings.stake_token
    reward_token = reward_token or LedgerConfig.reward_token()
    if duration_days <= 0:
        raise ValidationError("Duration must be positive", {"duration_days": duration_days})

    try:
        async with get_async_session() as session:
            if await get_active_pool(session, stake_token, reward_token) is not None:
                raise RewardPoolConflictError(stake_token, reward_token)

            pool = RewardPool(
                stake_token=stake_token,
                reward_token=reward_token,
                period_start=to_naive_utc(period_start),
                duration_days=duration_days,
                total_reward=truncate_amount(total_reward),
                status=RewardPoolStatus.ACTIVE,
            )
            session.add(pool)
            await session.flush()
    except IntegrityError:
        # Another writer opened a pool between the check and the insert
        raise RewardPoolConflictError(stake_token, reward_token)

    logger.info("Reward pool opened", pool_id=pool.id, pair=f"{stake_token}/{reward_token}")
    return pool
