"""Pytest configuration and fixtures for async testing."""
import os
from typing import AsyncGenerator

# Settings are read at import time; point them at test values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./creditledger_test.db")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_creditledger")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_creditledger")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ.setdefault("ADMIN_EMAILS", '["admin@example.com"]')
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from creditledger.api.deps import get_db, get_stripe_adapter  # noqa: E402
from creditledger.database import Base  # noqa: E402
from creditledger.main import app  # noqa: E402
from tests.utils.factories import ADMIN_EMAIL, bearer  # noqa: E402
from tests.utils.fakes import FakeStripeAdapter  # noqa: E402


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory bound to a fresh database for each test.

    Uses a SQLite file under ``tmp_path`` unless ``TEST_DATABASE_URL`` names
    another database (PostgreSQL for the concurrency tests).

    Yields:
        async_sessionmaker: Factory for test sessions
    """
    database_url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def stripe_fake() -> FakeStripeAdapter:
    return FakeStripeAdapter()


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker,
    stripe_fake: FakeStripeAdapter,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client with database and gateway overrides.

    Each request gets its own session, as in production.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_adapter] = lambda: stripe_fake

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_headers() -> dict[str, str]:
    return bearer("admin-subject", ADMIN_EMAIL)
