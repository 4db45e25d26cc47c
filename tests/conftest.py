"""
Shared fixtures: in-memory SQLite database, mocked provider HTTP and a
clean connector registry per test.
"""

import os

# must be set before any application module reads config
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("PAYPAL_CLIENT_ID", "AZsandbox-client")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "paypal-secret")
os.environ.setdefault("MAILCHIMP_CLIENT_ID", "mc-client")
os.environ.setdefault("MAILCHIMP_CLIENT_SECRET", "mc-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "google-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "google-secret")

from typing import Callable, Dict, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from connectors import state as oauth_state
from connectors.registry import ConnectorRegistry
from database.models import Base


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy own BEGIN so SAVEPOINTs work under pysqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _no_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clean_registry(monkeypatch):
    ConnectorRegistry.reset()
    monkeypatch.setattr(oauth_state, "_store", None)
    yield
    ConnectorRegistry.reset()


class ProviderMock:
    """
    Route table for ``httpx.MockTransport``: ``(method, path) → handler``.

    Every request is recorded in ``calls`` so tests can count token
    refreshes and retries.
    """

    def __init__(self) -> None:
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, path: str, handler) -> "ProviderMock":
        if isinstance(handler, httpx.Response):
            response = handler
            handler = lambda request: response  # noqa: E731
        self.routes[(method.upper(), path)] = handler
        return self

    def count(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def provider_mock() -> ProviderMock:
    return ProviderMock()
