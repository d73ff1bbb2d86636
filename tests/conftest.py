"""
Pytest fixtures and configuration for sign-in sync tests.

This module provides shared fixtures for:
- Test database setup/teardown with async support
- Session factory for worker and scheduler tests
- Mock Graph sign-in client
- Isolated sync status tracker
- Sample sign-in event factories
"""

import uuid
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
from faker import Faker

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.pool import NullPool

from signin_sync.database import Base
from signin_sync.models import TenantSyncState
from signin_sync.services.graph import (
    GraphSignInClient,
    SignInPage,
    format_graph_timestamp,
    parse_graph_timestamp,
)
from signin_sync.services.status import SyncStatusTracker

# Initialize Faker for generating test data
fake = Faker()

TENANT_ID = "11111111-2222-3333-4444-555555555555"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create test database engine on a throwaway SQLite file.

    Each test gets a fresh database instance.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'signin_sync_test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session.

    Provides a clean database session for each test with automatic rollback.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def tracker() -> SyncStatusTracker:
    """Fresh status tracker so tests never share in-flight claims."""
    return SyncStatusTracker(retention_seconds=30, shard_count=4)


# Mock Graph client fixtures
@pytest.fixture
def mock_graph_client() -> MagicMock:
    """
    Create mock Graph sign-in client for testing.

    fetch_page returns an empty final page unless a test overrides it.
    """
    mock_client = MagicMock(spec=GraphSignInClient)

    mock_client.fetch_page = AsyncMock(return_value=SignInPage())
    mock_client.close = AsyncMock()
    mock_client.is_configured = True

    return mock_client


def make_signin_event(
    occurred_at: Optional[datetime] = None,
    event_id: Optional[str] = None,
    client_app_used: str = "Browser",
    **overrides,
) -> Dict:
    """Build a Graph sign-in event as returned by /auditLogs/signIns."""
    occurred_at = occurred_at or datetime.utcnow() - timedelta(minutes=5)
    event = {
        "id": event_id or str(uuid.uuid4()),
        "createdDateTime": format_graph_timestamp(occurred_at.replace(microsecond=0)),
        "userDisplayName": fake.name(),
        "userPrincipalName": fake.email(),
        "userId": str(uuid.uuid4()),
        "appDisplayName": "Office 365 Exchange Online",
        "resourceDisplayName": "Office 365 Exchange Online",
        "clientAppUsed": client_app_used,
        "ipAddress": fake.ipv4(),
        "correlationId": str(uuid.uuid4()),
        "isInteractive": True,
        "riskState": "none",
        "riskDetail": "none",
        "conditionalAccessStatus": "success",
        "deviceDetail": {
            "displayName": "",
            "operatingSystem": "Windows 10",
            "browser": "Edge 120.0.0",
        },
        "location": {
            "city": fake.city(),
            "countryOrRegion": fake.country_code(),
        },
        "status": {
            "errorCode": 0,
            "failureReason": "Other.",
        },
    }
    event.update(overrides)
    return event


@pytest.fixture
def signin_event_factory() -> Callable[..., Dict]:
    """Factory fixture for Graph sign-in events."""
    return make_signin_event


def make_page(
    events: List[Dict],
    next_link: Optional[str] = None,
) -> SignInPage:
    """Wrap events in a SignInPage the way the client would."""
    ordered = sorted(events, key=lambda e: parse_graph_timestamp(e["createdDateTime"]))
    latest = parse_graph_timestamp(ordered[-1]["createdDateTime"]) if ordered else None
    return SignInPage(records=ordered, next_link=next_link, latest_occurred_at=latest)


@pytest.fixture
def page_factory() -> Callable[..., SignInPage]:
    """Factory fixture for SignInPage objects."""
    return make_page


# Database model factory fixtures
@pytest_asyncio.fixture
async def create_tenant_state(db_session: AsyncSession):
    """
    Factory fixture for creating tenant sync state rows.

    Usage:
        state = await create_tenant_state(signin_cursor="2024-01-15T10:00:00Z")
    """
    async def _create_tenant_state(**kwargs) -> TenantSyncState:
        defaults = {
            "tenant_id": TENANT_ID,
            "display_name": fake.company(),
            "signins_synced_total": 0,
            "sync_enabled": True,
        }
        defaults.update(kwargs)

        state = TenantSyncState(**defaults)
        db_session.add(state)
        await db_session.commit()
        await db_session.refresh(state)
        return state

    return _create_tenant_state
