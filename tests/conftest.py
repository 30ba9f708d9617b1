"""Shared test fixtures and configuration for pytest."""

import pytest

from wallbounce.cache import BoundedTTLCache
from wallbounce.events import EventBus
from wallbounce.session import SessionManager
from wallbounce.store.memory import InMemoryStateStore


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryStateStore:
    return InMemoryStateStore(region="us-east-1", clock=clock)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def session_manager(
    memory_store: InMemoryStateStore, clock: FakeClock, events: EventBus
) -> SessionManager:
    return SessionManager(
        memory_store,
        cache=BoundedTTLCache(16, 60.0, clock=clock),
        events=events,
        ttl_seconds=3600,
        retry_backoff=0,
        clock=clock,
    )


@pytest.fixture
def mock_database_url(tmp_path) -> str:
    """File-backed SQLite URL for the SQL store."""
    return f"sqlite+aiosqlite:///{tmp_path / 'state.db'}"


@pytest.fixture
def mock_redis_url() -> str:
    return "redis://localhost:6379/1"
