"""
Database models for the GoldStake bridge.

Contains the SQLAlchemy models for staking state, settlement queues, the
transaction audit ledger and authorization intents.
"""

from .base import Base, BaseModel, TimestampMixin
from .stake import StakeAccount, RewardPool, RewardPoolStatus
from .settlement import (
    RequestStatus, QueueType, SwapRequest, UnstakeRequest, ClaimRequest, QUEUE_MODELS
)
from .transaction import TransactionRecord, TransactionType
from .authorization import AuthorizationIntent, IntentAction, IntentStatus
from .exchange_rate import ExchangeRate

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "StakeAccount",
    "RewardPool",
    "RewardPoolStatus",
    "RequestStatus",
    "QueueType",
    "SwapRequest",
    "UnstakeRequest",
    "ClaimRequest",
    "QUEUE_MODELS",
    "TransactionRecord",
    "TransactionType",
    "AuthorizationIntent",
    "IntentAction",
    "IntentStatus",
    "ExchangeRate",
]
