"""
Exchange-rate cache backed by the ``exchange_rates`` table.

The table is written by an external price job; the bridge only reads it.
"""

from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
import structlog

from goldstake.core.config import settings
from goldstake.core.database import get_async_session
from goldstake.models.exchange_rate import ExchangeRate

logger = structlog.get_logger(__name__)


class ExchangeRateCache:
    """In-memory copy of the latest swap rates.

    A rate that was never loaded reads as zero, which the intake classifier
    treats as ``invalid_exchange_rate``.
    """

    def __init__(self, default_pair: Optional[str] = None):
        self.default_pair = default_pair or settings.exchange_rate_pair
        self._rates: Dict[str, Decimal] = {}
        self.logger = logger.bind(service="exchange_rate")

    def current_rate(self, pair_id: Optional[str] = None) -> Decimal:
        return self._rates.get(pair_id or self.default_pair, Decimal("0"))

    def set_rate(self, pair_id: str, rate: Decimal) -> None:
        self._rates[pair_id] = Decimal(rate)

    async def refresh(self, pair_id: Optional[str] = None) -> Optional[Decimal]:
        """Reload one pair from the database. Keeps the previous value on failure."""
        pair_id = pair_id or self.default_pair
        try:
            async with get_async_session() as session:
                result = await session.execute(
                    select(ExchangeRate.rate).where(ExchangeRate.swap_type == pair_id)
                )
                rate = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error("Failed to update rate from DB", pair=pair_id, error=str(e))
            return None

        if not rate:
            self.logger.warning("No rate found in DB, keeping previous value", pair=pair_id)
            return None

        self._rates[pair_id] = Decimal(rate)
        self.logger.debug("Exchange rate updated", pair=pair_id, rate=str(rate))
        return self._rates[pair_id]
