"""
Shared fixtures: a throw-away SQLite database per test, a fixed-key cipher,
a controllable clock and a mocked sportsbook gateway.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from connectors.encryption import TokenCipher
from connectors.gateway import SportsbookGateway
from connectors.schemas import TokenPair
from connectors.store import CredentialStore
from connectors.token_manager import TokenLifecycleManager
from database.session import init_models

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
TEST_KEY = bytes(range(32))
REDIRECT_URI = "http://ui.test/oauth/callback"


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


def token_pair(access="access-1", refresh="refresh-1", expires_in=3600, user_id="u-42", scopes=None):
    return TokenPair(
        access_token=access,
        refresh_token=refresh,
        expires_in=expires_in,
        scopes=scopes,
        provider_user_id=user_id,
    )


@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'credentials.db'}")
    await init_models(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return CredentialStore(session_factory)


@pytest.fixture
def cipher():
    return TokenCipher(TEST_KEY)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    gw = MagicMock(spec=SportsbookGateway)
    gw.exchange_code = AsyncMock(return_value=token_pair())
    gw.refresh = AsyncMock(return_value=token_pair(access="access-2", refresh="refresh-2"))
    gw.notify_subscription_change = AsyncMock(return_value=True)
    return gw


@pytest.fixture
def manager(store, gateway, cipher, clock):
    return TokenLifecycleManager(
        store=store,
        gateway=gateway,
        cipher=cipher,
        redirect_uri=REDIRECT_URI,
        clock=clock,
    )
