"""
Test replay of missed ledger payments.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from goldstake.core.config import settings
from goldstake.core.database import get_async_session
from goldstake.core.exceptions import LedgerError
from goldstake.indexer.recovery import RecoveryJob
from goldstake.models.stake import StakeAccount
from goldstake.services.alert_service import AlertLevel
from tests.fakes import USER, stake_payment

SWAP_POOL = settings.swap_pool_address
STAKE_POOL = settings.stake_pool_address


@pytest.fixture
def job(ledger, intake, alerts):
    return RecoveryJob(ledger, intake, alerts, addresses=[SWAP_POOL, STAKE_POOL])


async def staked_amount() -> Decimal:
    async with get_async_session() as session:
        account = await session.get(StakeAccount, USER)
    return account.staked_amount if account else Decimal("0")


@pytest.mark.asyncio
async def test_missed_payment_is_replayed(db, job, ledger):
    ledger.history[STAKE_POOL] = [
        stake_payment(1, "10"),
        stake_payment(2, "10", transaction_type="TrustSet"),
        stake_payment(3, "10", validated=False),
    ]

    report = await job.recover_missed_transactions()

    assert report.inspected == 3
    assert report.replayed == 1
    assert report.skipped == 2
    assert report.errors == 0
    assert await staked_amount() == Decimal("10")


@pytest.mark.asyncio
async def test_known_hash_is_skipped(db, job, ledger, intake):
    payment = stake_payment(1, "10")
    await intake.route_payment(payment)
    ledger.history[STAKE_POOL] = [payment]

    report = await job.recover_missed_transactions()

    assert report.skipped == 1
    assert report.replayed == 0
    assert await staked_amount() == Decimal("10")


@pytest.mark.asyncio
async def test_payments_before_since_are_skipped(db, job, ledger):
    ledger.history[STAKE_POOL] = [
        stake_payment(1, "10", date=datetime(2025, 1, 1)),
        stake_payment(2, "20", date=datetime(2025, 3, 1)),
    ]

    report = await job.recover_missed_transactions(since=datetime(2025, 2, 1))

    assert report.replayed == 1
    assert report.skipped == 1
    assert await staked_amount() == Decimal("20")


@pytest.mark.asyncio
async def test_history_is_paged_up_to_the_limit(db, job, ledger):
    ledger.history[STAKE_POOL] = [stake_payment(n, "1") for n in range(1, 31)]

    report = await job.recover_missed_transactions(limit_per_address=25)

    stake_calls = [call for call in ledger.history_calls if call[0] == STAKE_POOL]
    assert stake_calls == [(STAKE_POOL, None, 20), (STAKE_POOL, 20, 5)]
    assert report.inspected == 25
    assert report.replayed == 25
    assert await staked_amount() == Decimal("25")


@pytest.mark.asyncio
async def test_default_limit_applies(db, job, ledger):
    ledger.history[STAKE_POOL] = [stake_payment(n, "1") for n in range(1, 11)]

    report = await job.recover_missed_transactions()

    assert report.inspected == settings.recovery_limit


@pytest.mark.asyncio
async def test_history_error_moves_on_to_next_address(db, job, ledger, alerts):
    ledger.history_errors[SWAP_POOL] = LedgerError("actNotFound")
    ledger.history[STAKE_POOL] = [stake_payment(1, "10")]

    report = await job.recover_missed_transactions()

    assert report.errors == 1
    assert report.replayed == 1
    assert len(alerts.at(AlertLevel.ERROR)) == 1
    assert "account_tx" in alerts.at(AlertLevel.ERROR)[0]


@pytest.mark.asyncio
async def test_zero_limit_inspects_nothing(db, job, ledger):
    ledger.history[STAKE_POOL] = [stake_payment(1, "10")]

    report = await job.recover_missed_transactions(limit_per_address=0)

    assert report.inspected == 0
    assert ledger.history_calls == []
    assert await staked_amount() == Decimal("0")
