import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from tablebill.core.database import get_database
from tablebill.main import app
from tablebill.models import restaurant, subscription  # noqa: F401 - register tables
from tablebill.services.admin.sessions import login_rate_limiter, registry
from tablebill.services.billing.processor import get_processor
from tests.helpers.fake_processor import FakeProcessor
from tests.helpers.sqlite_session import SyncAsyncSession


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def options(self, url: str, **kwargs):
        return self.request("OPTIONS", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture
def sqlite_db():
    """Provide a real in-memory SQLite DB behind the get_database dependency."""
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    sync_factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)

    async def override():
        session = SyncAsyncSession(sync_factory)
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_database] = override
    yield sync_factory
    app.dependency_overrides.pop(get_database, None)
    engine.dispose()


@pytest.fixture
def fake_processor():
    processor = FakeProcessor()
    app.dependency_overrides[get_processor] = lambda: processor
    yield processor
    app.dependency_overrides.pop(get_processor, None)


@pytest.fixture(autouse=True)
def reset_admin_state():
    registry.clear()
    login_rate_limiter.reset()
    yield
    registry.clear()
    login_rate_limiter.reset()
