"""
Exchange rates written by the price oracle job.
"""

from decimal import Decimal

from sqlalchemy import String, Integer, DECIMAL
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class ExchangeRate(BaseModel, TimestampMixin):
    """Latest rate for a swap pair, e.g. ``GPC_RLUSD`` (reward token per stake token)."""

    __tablename__ = "exchange_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    swap_type: Mapped[str] = mapped_column(String(40), unique=True, comment="Pair identifier")

    rate: Mapped[Decimal] = mapped_column(DECIMAL(20, 6), default=Decimal("0"), comment="Current rate")

    def __repr__(self) -> str:
        return f"<ExchangeRate({self.swap_type}={self.rate})>"
