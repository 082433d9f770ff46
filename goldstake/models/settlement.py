"""
Settlement request queues: swap, unstake and claim.

All three tables share one shape and one lifecycle:
pending -> processing -> completed | failed. Completed and failed are terminal.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DECIMAL, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, declared_attr

from .base import BaseModel, TimestampMixin, enum_type


class RequestStatus(Enum):
    """Settlement request status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueType(Enum):
    """The three settlement queues."""
    SWAP = "swap"
    UNSTAKE = "unstake"
    CLAIM = "claim"


class SettlementRequestMixin(TimestampMixin):
    """Columns common to every settlement queue."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account: Mapped[str] = mapped_column(String(35), comment="Destination XRPL address")

    send_token: Mapped[str] = mapped_column(String(40), comment="Currency paid out")

    send_amount: Mapped[Decimal] = mapped_column(
        DECIMAL(20, 6),
        default=Decimal("0"),
        comment="Amount paid out"
    )

    status: Mapped[RequestStatus] = mapped_column(
        enum_type(RequestStatus, "settlement_status"),
        default=RequestStatus.PENDING,
        comment="Settlement status"
    )

    fail_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Rejection reason, ledger result code or error message"
    )

    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When a processor claimed the row"
    )

    @declared_attr.directive
    def __table_args__(cls):
        return (
            Index(f"idx_{cls.__tablename__}_status_id", "status", "id"),
            Index(f"idx_{cls.__tablename__}_account_created", "account", "created_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (RequestStatus.COMPLETED, RequestStatus.FAILED)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__}(id={self.id}, account={self.account}, "
            f"amount={self.send_amount} {self.send_token}, status={self.status.value})>"
        )


class SwapRequest(BaseModel, SettlementRequestMixin):
    """Outbound leg of a swap received on the swap pool."""

    __tablename__ = "swap_requests"

    receive_token: Mapped[str] = mapped_column(String(40), comment="Currency received from the user")

    receive_amount: Mapped[Decimal] = mapped_column(DECIMAL(20, 6), comment="Amount received from the user")

    source_tx_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        unique=True,
        comment="Hash of the inbound payment that created this request"
    )


class UnstakeRequest(BaseModel, SettlementRequestMixin):
    """Principal return from the stake pool."""

    __tablename__ = "unstake_requests"


class ClaimRequest(BaseModel, SettlementRequestMixin):
    """Reward payout from the stake pool."""

    __tablename__ = "claim_requests"


QUEUE_MODELS = {
    QueueType.SWAP: SwapRequest,
    QueueType.UNSTAKE: UnstakeRequest,
    QueueType.CLAIM: ClaimRequest,
}
