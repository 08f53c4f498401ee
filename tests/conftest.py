"""
Viotraix Test Configuration and Shared Fixtures

Provides an in-memory SQLite database, the FastAPI application with its
external collaborators (vision model, payment provider, email) replaced by
fakes, and an async HTTP client bound to it.

Example usage:
    async def test_usage(client, session):
        profile = await create_subscriber(session, plan=Plan.PRO)
        response = await client.get("/api/usage", headers=auth_headers(profile.id))
"""

import os

# Settings read at import time must be in place before the app is imported
os.environ["VT_TEST_DISABLE_RATELIMIT"] = "1"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-that-is-long-enough-for-hs256"
os.environ["LEMONSQUEEZY_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ.pop("CRON_SECRET", None)
os.environ.pop("POSTMARK_API_TOKEN", None)
os.environ.pop("DATABASE_URL", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import core.models_sql  # noqa: F401
from app import create_app
from core.db import get_session
from core.email import get_email_sender
from core.payments import get_payment_client
from core.vision import get_analyzer

from tests.helpers import FakeAnalyzer, FakePaymentClient, RecordingSender


@pytest_asyncio.fixture
async def engine():
    """
    Provide a fresh in-memory database with all tables created.

    StaticPool keeps every session on the same connection so the data is
    shared between the test and the application.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    """Session for seeding and inspecting data directly."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def email_sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def payment_client() -> FakePaymentClient:
    return FakePaymentClient()


@pytest.fixture
def app(session_maker, analyzer, email_sender, payment_client):
    """Create the application with database and external services overridden."""
    application = create_app()

    async def override_get_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_session] = override_get_session
    application.dependency_overrides[get_analyzer] = lambda: analyzer
    application.dependency_overrides[get_email_sender] = lambda: email_sender
    application.dependency_overrides[get_payment_client] = lambda: payment_client
    return application


@pytest_asyncio.fixture
async def client(app):
    """
    Async HTTP client bound to the app.

    ``raise_app_exceptions=False`` lets unhandled errors come back as the
    500 response the error handler builds.
    """
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
