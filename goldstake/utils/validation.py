"""
Ledger data validation utilities.
Provides validation for XRPL addresses and request amounts.
"""

from decimal import Decimal
from typing import Union

from xrpl.core.addresscodec import is_valid_classic_address

from goldstake.core.exceptions import ValidationError
from goldstake.utils.amounts import to_decimal


class XrplValidator:
    """Validator for XRPL data."""

    @staticmethod
    def is_valid_address(address: str) -> bool:
        """
        Validate a classic XRPL address (``r...``).

        Args:
            address: String to validate

        Returns:
            True if valid, False otherwise
        """
        if not address or not isinstance(address, str):
            return False
        return is_valid_classic_address(address)

    @staticmethod
    def validate_address(address: str) -> str:
        if not XrplValidator.is_valid_address(address):
            raise ValidationError("Invalid XRPL address", {"address": address})
        return address

    @staticmethod
    def validate_amount(amount: Union[Decimal, int, str, float]) -> Decimal:
        """Parse a request amount, rejecting anything that is not a finite number."""
        try:
            value = to_decimal(amount)
        except ValueError:
            raise ValidationError("Amount is invalid", {"amount": str(amount)})
        if not value.is_finite():
            raise ValidationError("Amount is invalid", {"amount": str(amount)})
        return value
