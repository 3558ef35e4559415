"""Shared fixtures.

The database is SQLite in memory (aiosqlite); the model router is a mock
whose ``chat_completion`` answers are set per test.
"""

import asyncio
import os

# Settings are read once, on first import of awash
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AI_GATEWAY_API_KEY", "test-key")
os.environ.setdefault("GEMINI_API_KEY", "")

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from awash import realtime
from awash.database.introspection import clear_schema_cache
from awash.database.session import init_db
from awash.llm.router import set_router
from awash.schemas import GatewayResult, LLMResponse


PRIMARY = "google/gemini-2.5-pro"
BACKUP = "google/gemini-2.5-flash"


@pytest.fixture(autouse=True)
def reset_singletons():
    """Every test starts with an empty schema cache, router and broadcaster."""
    clear_schema_cache()
    set_router(None)
    realtime._broadcaster = None
    yield
    clear_schema_cache()
    set_router(None)
    realtime._broadcaster = None


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_result():
    """Build the GatewayResult a router call returns."""
    def _make(content: str, model: str = PRIMARY, was_backup: bool = False) -> GatewayResult:
        return GatewayResult(
            response=LLMResponse(content=content, model=model),
            model_used=model,
            was_backup=was_backup,
        )
    return _make


@pytest.fixture
def fake_router():
    """Mock router installed as the global one."""
    router = MagicMock()
    router.primary_model = PRIMARY
    router.backup_model = BACKUP
    router.chat_completion = AsyncMock()
    router.close = AsyncMock()
    set_router(router)
    return router


@pytest.fixture
def user_id():
    return uuid4()


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def api_session_factory(tmp_path):
    """File database for the API tests.

    TestClient runs the app on its own event loop, so connections are not
    pooled across loops.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def client(api_session_factory):
    from fastapi.testclient import TestClient

    from awash.api.main import app
    from awash.api.routes import get_session_factory
    from awash.database.session import get_db

    async def override_get_db():
        async with api_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: api_session_factory
    # Not used as a context manager, so the lifespan (and its init_db) never runs
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user_id):
    return {"X-User-Id": str(user_id)}
