"""
Custom exception classes for the bridge.
Provides structured error handling across all modules.
"""

from decimal import Decimal
from typing import Any, Optional, Dict


class GoldStakeException(Exception):
    """Base exception class for the GoldStake bridge."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(GoldStakeException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(GoldStakeException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class LedgerError(GoldStakeException):
    """Raised when a call to the XRP Ledger fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LEDGER_ERROR", details)


class LedgerConnectionError(LedgerError):
    """Raised when the ledger connection cannot be (re)established."""


class ValidationError(GoldStakeException):
    """Raised when data validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class NotFoundError(GoldStakeException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class AuthorizationError(GoldStakeException):
    """Raised when authorization fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHORIZATION_ERROR", details)


# Authorization intent exceptions
class IntentNotFoundError(NotFoundError):
    """Raised when no pending intent exists for a signing session."""

    def __init__(self, session_id: str):
        super().__init__(
            f"No pending request found for session: {session_id}",
            {"session_id": session_id}
        )


class AuthorizationMismatchError(AuthorizationError):
    """Raised when the signer is not the account that requested the action."""

    def __init__(self, requester: str, signer: str):
        super().__init__(
            "Requester and signer do not match",
            {"requester": requester, "signer": signer}
        )


# Business logic exceptions
class InsufficientFundsError(ValidationError):
    """Raised when an unstake exceeds the staked principal."""

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient staking balance: required {required}, available {available}",
            {"required": str(required), "available": str(available)}
        )


class InsufficientRewardError(ValidationError):
    """Raised when a claim exceeds the accrued reward."""

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient claimable reward: requested {requested}, available {available}",
            {"requested": str(requested), "available": str(available)}
        )


class ClaimBelowMinimumFeeError(ValidationError):
    """Raised when a claim would not cover the fixed claim fee."""

    def __init__(self, amount: Decimal, fee: Decimal):
        super().__init__(
            f"Minimum claim fee ({fee}) required, claimable {amount}",
            {"amount": str(amount), "fee": str(fee)}
        )


class RewardPoolNotFoundError(NotFoundError):
    """Raised when no active reward pool exists for a token pair."""

    def __init__(self, stake_token: str, reward_token: str):
        super().__init__(
            f"No active reward pool for {stake_token}/{reward_token}",
            {"stake_token": stake_token, "reward_token": reward_token}
        )


class RewardPoolConflictError(ValidationError):
    """Raised when opening a second active pool for the same token pair."""

    def __init__(self, stake_token: str, reward_token: str):
        super().__init__(
            f"An active reward pool already exists for {stake_token}/{reward_token}",
            {"stake_token": stake_token, "reward_token": reward_token}
        )
