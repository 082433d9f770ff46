"""
Test database models and constraints.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from goldstake.core.database import get_async_session, DatabaseManager
from goldstake.core.exceptions import DatabaseError
from goldstake.models import (
    AuthorizationIntent,
    IntentAction,
    RewardPool,
    RewardPoolStatus,
    StakeAccount,
    SwapRequest,
    TransactionRecord,
    TransactionType,
    RequestStatus,
)
from tests.fakes import USER, tx_hash


@pytest.mark.asyncio
async def test_health_check(db):
    assert await DatabaseManager.health_check() is True


@pytest.mark.asyncio
async def test_stake_account_model(db):
    """Test StakeAccount creation and defaults."""
    async with get_async_session() as session:
        session.add(StakeAccount(xrpl_address=USER, staked_amount=Decimal("12.5")))

    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
        assert account is not None
        assert account.staked_amount == Decimal("12.5")
        assert account.pocket_reward == Decimal("0")
        assert account.created_at is not None
        assert account.to_dict()["xrpl_address"] == USER


@pytest.mark.asyncio
async def test_transaction_hash_is_unique(db):
    async with get_async_session() as session:
        session.add(TransactionRecord(
            xrpl_address=USER, tx_type=TransactionType.STAKE, amount=Decimal("1"), symbol="GPC", tx_hash=tx_hash(1)
        ))

    with pytest.raises(IntegrityError):
        async with get_async_session() as session:
            session.add(TransactionRecord(
                xrpl_address=USER, tx_type=TransactionType.SWAP_IN, amount=Decimal("2"), symbol="GPC", tx_hash=tx_hash(1)
            ))


@pytest.mark.asyncio
async def test_enums_are_stored_by_value(db):
    async with get_async_session() as session:
        session.add(SwapRequest(
            account=USER,
            receive_token="RLUSD",
            receive_amount=Decimal("1"),
            send_token="GPC",
            send_amount=Decimal("20"),
            source_tx_hash=tx_hash(1),
        ))

    async with get_async_session() as session:
        status = (await session.execute(text("SELECT status FROM swap_requests"))).scalar()
        request = (await session.execute(text("SELECT id FROM swap_requests"))).scalar()
        loaded = await session.get(SwapRequest, request)
    assert status == "pending"
    assert loaded.status == RequestStatus.PENDING
    assert not loaded.is_terminal


@pytest.mark.asyncio
async def test_intent_session_id_is_unique(db):
    def intent():
        return AuthorizationIntent(
            xrpl_address=USER, nonce="n", request_type=IntentAction.CLAIM, amount=Decimal("1"), uuid="session-1"
        )

    async with get_async_session() as session:
        session.add(intent())

    with pytest.raises(IntegrityError):
        async with get_async_session() as session:
            session.add(intent())


@pytest.mark.asyncio
async def test_one_active_pool_per_pair(db):
    def pool(status):
        return RewardPool(
            stake_token="GPC",
            reward_token="RLUSD",
            period_start=datetime(2025, 1, 1),
            duration_days=30,
            status=status,
        )

    async with get_async_session() as session:
        session.add(pool(RewardPoolStatus.ENDED))
        session.add(pool(RewardPoolStatus.ENDED))
        session.add(pool(RewardPoolStatus.ACTIVE))

    with pytest.raises(IntegrityError):
        async with get_async_session() as session:
            session.add(pool(RewardPoolStatus.ACTIVE))


@pytest.mark.asyncio
async def test_session_requires_initialized_database():
    with pytest.raises(DatabaseError):
        async with get_async_session():
            pass

    with pytest.raises(DatabaseError):
        await DatabaseManager.create_tables()
