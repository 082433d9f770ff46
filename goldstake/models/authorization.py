"""
Authorization intents bridging the external signing exchange to settlement.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DECIMAL, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, enum_type


class IntentAction(Enum):
    """Actions a user can authorize by signature."""
    UNSTAKE = "unstake"
    CLAIM = "claim"


class IntentStatus(Enum):
    """pending -> verified is the only transition."""
    PENDING = "pending"
    VERIFIED = "verified"


class AuthorizationIntent(BaseModel, TimestampMixin):
    """A one-time authorization request awaiting the user's signature."""

    __tablename__ = "nonce_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    xrpl_address: Mapped[str] = mapped_column(String(35), comment="Requesting address")

    nonce: Mapped[str] = mapped_column(String(64), comment="Random nonce embedded in the sign request")

    request_type: Mapped[IntentAction] = mapped_column(
        enum_type(IntentAction, "intent_action"),
        comment="unstake or claim"
    )

    amount: Mapped[Decimal] = mapped_column(DECIMAL(20, 6), comment="Authorized amount")

    uuid: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        comment="External signing-session id"
    )

    status: Mapped[IntentStatus] = mapped_column(
        enum_type(IntentStatus, "intent_status"),
        default=IntentStatus.PENDING,
        comment="pending or verified"
    )

    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, comment="When the signature was accepted")

    __table_args__ = (
        Index("idx_nonce_requests_address_status", "xrpl_address", "status"),
    )

    def __repr__(self) -> str:
        return f"<AuthorizationIntent(id={self.id}, action={self.request_type.value}, status={self.status.value})>"
