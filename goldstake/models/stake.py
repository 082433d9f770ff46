"""
Staking state: per-address stake accounts and reward pools.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DECIMAL, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_type


class StakeAccount(BaseModel, TimestampMixin):
    """Staked principal and accrued reward of one ledger address.

    ``updated_at`` doubles as the accrual baseline: reward accrues from
    ``max(updated_at, last_claim_at, pool.period_start)``.
    """

    __tablename__ = "stakes"

    xrpl_address: Mapped[str] = mapped_column(
        String(35),
        primary_key=True,
        comment="Staker's classic XRPL address"
    )

    staked_amount: Mapped[Decimal] = mapped_column(
        DECIMAL(20, 6),
        default=Decimal("0"),
        comment="Staked principal in stake token"
    )

    pocket_reward: Mapped[Decimal] = mapped_column(
        DECIMAL(20, 6),
        default=Decimal("0"),
        comment="Accrued but unclaimed reward"
    )

    last_claim_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="Last successful claim authorization"
    )

    def __repr__(self) -> str:
        return f"<StakeAccount(address={self.xrpl_address}, staked={self.staked_amount}, pocket={self.pocket_reward})>"


class RewardPoolStatus(Enum):
    """Reward pool lifecycle."""
    ACTIVE = "active"
    ENDED = "ended"


class RewardPool(BaseModel, TimestampMixin):
    """Time-bounded reward configuration for a (stake, reward) token pair."""

    __tablename__ = "reward_pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    stake_token: Mapped[str] = mapped_column(String(40), comment="Token being staked")

    reward_token: Mapped[str] = mapped_column(String(40), comment="Token paid as reward")

    period_start: Mapped[datetime] = mapped_column(DateTime, comment="Start of the reward period")

    duration_days: Mapped[int] = mapped_column(Integer, comment="Length of the reward period in days")

    total_reward: Mapped[Decimal] = mapped_column(
        DECIMAL(20, 6),
        default=Decimal("0"),
        comment="Reward budget for the period"
    )

    status: Mapped[RewardPoolStatus] = mapped_column(
        enum_type(RewardPoolStatus, "reward_pool_status"),
        default=RewardPoolStatus.ACTIVE,
        comment="active or ended"
    )

    __table_args__ = (
        Index(
            "uq_reward_pool_active_pair",
            "stake_token",
            "reward_token",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_reward_pool_pair_status", "stake_token", "reward_token", "status"),
    )

    def __repr__(self) -> str:
        return f"<RewardPool(id={self.id}, pair={self.stake_token}/{self.reward_token}, status={self.status.value})>"

    @property
    def period_end(self) -> datetime:
        return self.period_start + timedelta(days=self.duration_days)

    @property
    def is_active(self) -> bool:
        return self.status == RewardPoolStatus.ACTIVE
