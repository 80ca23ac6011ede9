"""Pytest configuration and fixtures."""

from __future__ import annotations

import os

# Settings are read at import time; keep the suite off any real database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")

from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from conviction.engine.schemas import Signal, SignalSnapshot
from conviction.engine.state import LearningState, StateProvider
from conviction.engine.stores import InMemoryLearningStore, set_learning_store


pytest_plugins = ["pytest_asyncio"]


AS_OF = datetime(2026, 3, 10, 15, 30, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Drop the process-wide learning store between tests."""
    yield
    set_learning_store(None)


@pytest.fixture
def memory_store() -> InMemoryLearningStore:
    return InMemoryLearningStore()


@pytest.fixture
def default_state() -> LearningState:
    return LearningState.defaults()


@pytest.fixture
def make_snapshot():
    """Build a snapshot from ``source_id -> value`` pairs."""

    def _make(ticker: str = "AAPL", taken_at: datetime = AS_OF, **values) -> SignalSnapshot:
        return SignalSnapshot(
            ticker=ticker,
            signals={
                source_id: Signal(source_id=source_id, ticker=ticker, value=value, timestamp=taken_at)
                for source_id, value in values.items()
            },
            taken_at=taken_at,
        )

    return _make


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator:
    """File-backed SQLite database with the full schema, bound as the global engine."""
    from conviction.database.connection import close_database, init_sqlalchemy_engine
    from conviction.database.orm import Base

    await close_database()
    engine = await init_sqlalchemy_engine(f"sqlite+aiosqlite:///{tmp_path / 'conviction.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await close_database()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator:
    from conviction.database.connection import get_session

    async with get_session() as session:
        yield session


@pytest.fixture
def client(memory_store: InMemoryLearningStore) -> Generator[TestClient, None, None]:
    """API client wired to an in-memory learning store."""
    from conviction.api.app import create_api_app
    from conviction.api.dependencies import get_state, get_store

    set_learning_store(memory_store)
    provider = StateProvider(memory_store, ttl=0)

    app = create_api_app()
    app.dependency_overrides[get_store] = lambda: memory_store
    app.dependency_overrides[get_state] = lambda: provider

    with TestClient(app) as test_client:
        yield test_client
