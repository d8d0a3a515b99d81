"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-token-encryption-0123")
os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from unittest.mock import Mock
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.search.gsc_adapter import GSCAdapter
from core.security import TokenCipher
from infrastructure.config import SyncConfig
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base, GSCConnection, GSCProperty
from services.gsc_properties import PropertyEnumerator
from services.gsc_sync import NoDelayPacer, SyncOrchestrator
from services.gsc_token_manager import TokenManager

TEST_ENCRYPTION_KEY = "test-secret-key-for-token-encryption-0123"
TEST_CRON_SECRET = os.environ["CRON_SECRET"]
TEST_TODAY = date(2026, 10, 19)

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# Sync Engine Fixtures
# ============================================================================


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def sync_config() -> SyncConfig:
    """Sync configuration with test OAuth client, no pacing delay and no daily series."""
    return SyncConfig(
        google_client_id="test_client_id",
        google_client_secret="test_client_secret",
        google_redirect_uri="http://localhost:8000/callback",
        encryption_key=TEST_ENCRYPTION_KEY,
        property_delay_seconds=0.0,
        daily_series=False,
    )


@pytest.fixture
def mock_adapter() -> Mock:
    """GSCAdapter double; tests set return values per method."""
    adapter = Mock(spec=GSCAdapter)
    adapter.list_sites.return_value = []
    return adapter


@pytest.fixture
def pacer() -> NoDelayPacer:
    return NoDelayPacer()


@pytest.fixture
def orchestrator(sync_config, mock_adapter, cipher, pacer) -> SyncOrchestrator:
    return SyncOrchestrator(
        config=sync_config,
        adapter=mock_adapter,
        token_manager=TokenManager(mock_adapter, cipher),
        enumerator=PropertyEnumerator(mock_adapter),
        pacer=pacer,
        today=TEST_TODAY,
    )


@pytest.fixture
def make_connection(db_session: AsyncSession, cipher: TokenCipher):
    """Factory for stored connections with encrypted tokens."""

    async def _make(
        user_id: Optional[str] = None,
        access_token: str = "valid-access-token",
        refresh_token: str = "stored-refresh-token",
        expires_in: timedelta = timedelta(hours=1),
        is_active: bool = True,
    ) -> GSCConnection:
        connection = GSCConnection(
            id=str(uuid4()),
            user_id=user_id or str(uuid4()),
            email="owner@example.com",
            access_token_encrypted=cipher.encrypt(access_token),
            refresh_token_encrypted=cipher.encrypt(refresh_token),
            token_expiry=datetime.now(timezone.utc) + expires_in,
            is_active=is_active,
            sync_errors=[],
        )
        db_session.add(connection)
        await db_session.commit()
        await db_session.refresh(connection)
        return connection

    return _make


@pytest.fixture
def make_property(db_session: AsyncSession):
    """Factory for cached properties under a connection."""

    async def _make(
        connection: GSCConnection,
        site_url: str,
        permission_level: str = "siteOwner",
        is_active: bool = True,
    ) -> GSCProperty:
        prop = GSCProperty(
            id=str(uuid4()),
            connection_id=connection.id,
            site_url=site_url,
            permission_level=permission_level,
            is_active=is_active,
        )
        db_session.add(prop)
        await db_session.commit()
        await db_session.refresh(prop)
        return prop

    return _make


@pytest.fixture
def cron_headers() -> dict:
    return {"Authorization": f"Bearer {TEST_CRON_SECRET}"}


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
