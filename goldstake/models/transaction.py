"""
Append-only audit ledger of settled ledger transfers.
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import String, Integer, DECIMAL, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_type


class TransactionType(Enum):
    """Kinds of ledger movements recorded in the audit trail."""
    STAKE = "STAKE"
    SWAP_IN = "SWAP_IN"
    SWAP_OUT = "SWAP_OUT"
    UNSTAKE = "UNSTAKE"
    CLAIM = "CLAIM"


class TransactionRecord(BaseModel, TimestampMixin):
    """One row per ledger transaction the bridge has accounted for.

    ``tx_hash`` is unique: its presence is what makes replays idempotent.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    xrpl_address: Mapped[str] = mapped_column(String(35), comment="User address")

    tx_type: Mapped[TransactionType] = mapped_column(
        enum_type(TransactionType, "transaction_type"),
        comment="Movement type"
    )

    amount: Mapped[Decimal] = mapped_column(DECIMAL(20, 6), comment="Amount moved")

    symbol: Mapped[str] = mapped_column(String(40), comment="Currency code")

    tx_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        comment="Ledger transaction hash"
    )

    __table_args__ = (
        Index("idx_transactions_address_created", "xrpl_address", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TransactionRecord(type={self.tx_type.value}, amount={self.amount} {self.symbol}, hash={self.tx_hash[:8]}...)>"
