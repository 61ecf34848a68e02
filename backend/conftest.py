import itertools
import os
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from idempay.api.deps import get_dispatcher, get_settings
from idempay.config import Settings
from idempay.db.session import get_session, get_session_factory
from idempay.main import app
from idempay.models import Base
from idempay.services.payment_service import PaymentService
from idempay.services.providers import AsyncSimProvider, ProviderDispatcher, SyncSimProvider

TEST_API_KEY = "test-api-key"

# Set TEST_DATABASE_URL to run against Postgres instead of a per-test SQLite file
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'idempay.db'}",
        api_key=TEST_API_KEY,
        charge_retry_delay_seconds=0,
        conflict_retry_delay_seconds=0,
        sync_provider_latency_seconds=0,
        charge_timeout_seconds=5,
    )


@pytest_asyncio.fixture
async def engine(settings):
    connect_args = {"timeout": 30} if settings.database_url.startswith("sqlite") else {}
    eng = create_async_engine(settings.database_url, connect_args=connect_args)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as s:
        yield s


@pytest.fixture
def async_provider() -> AsyncSimProvider:
    """Hands out PTX123, PTX124, ... as provider transaction ids."""
    counter = itertools.count(123)
    return AsyncSimProvider(transaction_id_factory=lambda: f"PTX{next(counter)}")


@pytest.fixture
def sync_provider() -> SyncSimProvider:
    return SyncSimProvider(amount_limit=Decimal("10000"), latency=0)


@pytest.fixture
def dispatcher(sync_provider, async_provider) -> ProviderDispatcher:
    return ProviderDispatcher([sync_provider, async_provider], timeout=5)


@pytest.fixture
def service(session_factory, dispatcher, settings) -> PaymentService:
    return PaymentService(session_factory, dispatcher, settings)


@pytest_asyncio.fixture
async def client(session_factory, dispatcher, settings) -> AsyncGenerator[AsyncClient]:
    async def override_get_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_settings] = lambda: settings
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-API-Key": TEST_API_KEY},
    ) as c:
        yield c
    app.dependency_overrides.clear()
