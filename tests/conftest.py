"""
Shared fixtures: in-memory database, fake ledger and recording alert sink.
"""

import os

os.environ.setdefault("ENVIRONMENT", "staging")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SWAP_POOL_ADDRESS", "rQU2LkjttEmWyY56jgmGXZND5yriWihZMW")
os.environ.setdefault("SWAP_POOL_SECRET", "sEdSWAPPOOLSECRETFORTESTS")
os.environ.setdefault("STAKE_POOL_ADDRESS", "r9H4gzDaxtsB41iMYbUDNtLHjCeBZH88kb")
os.environ.setdefault("STAKE_POOL_SECRET", "sEdSTAKEPOOLSECRETFORTESTS")

from decimal import Decimal

import pytest

from goldstake.core.config import settings
from goldstake.core.database import init_database, close_database, DatabaseManager
from goldstake.services.exchange_rate import ExchangeRateCache
from goldstake.services.intake import IntakeClassifier
from tests.fakes import FakeLedgerClient, RecordingAlerts


@pytest.fixture
async def db():
    await init_database(settings.database_url)
    await DatabaseManager.create_tables()
    yield
    await DatabaseManager.drop_tables()
    await close_database()


@pytest.fixture
def alerts():
    return RecordingAlerts()


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def rates():
    cache = ExchangeRateCache()
    cache.set_rate(settings.exchange_rate_pair, Decimal("2"))
    return cache


@pytest.fixture
def intake(ledger, rates, alerts):
    return IntakeClassifier(ledger, rates, alerts)
