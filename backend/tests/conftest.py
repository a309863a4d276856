# backend/tests/conftest.py
"""
Pytest configuration for the courier test suite.

The suite runs against a throwaway SQLite file. A file (rather than an
in-memory database) is used because store work runs in worker threads via
``run_in_session`` and every thread needs to see the same data.
"""

import os
import sys
import tempfile

# Point the settings at the test database BEFORE any courier imports!
_TEST_DB_DIR = tempfile.mkdtemp(prefix="courier-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'courier_test.db')}"
os.environ["CI"] = "1"
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DELIVER_BACKLOG_ON_CONNECT", "false")

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from datetime import datetime, timedelta, timezone
import shutil
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy.orm import Session

from courier.core.config import settings
from courier.database import Base, SessionLocal, engine, init_db
from courier.models.message import Message
from courier.models.user import ChatUser
from courier.services.message_service import LifecyclePolicy
from courier.services.messaging.fanout import FanoutRouter
from courier.services.messaging.presence_store import DatabasePresenceStore
from courier.services.messaging.registry import ConnectionRegistry
from courier.services.presence_service import PresenceService


def _validate_test_database_url(database_url: str) -> None:
    """Refuse to run the suite against anything but the throwaway SQLite file."""
    if not database_url.startswith("sqlite") or _TEST_DB_DIR not in database_url:
        raise RuntimeError(f"Refusing to run tests against {database_url}")


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def _test_database():
    _validate_test_database_url(settings.database_url)
    init_db()
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    shutil.rmtree(_TEST_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def _clean_tables(_test_database):
    """Every test starts from empty tables."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def session_factory() -> Callable[[], Session]:
    return SessionLocal


@pytest.fixture
def db() -> Session:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def load_message() -> Callable[[str], Optional[Message]]:
    """Read a message row through a fresh session (sees other sessions' commits)."""

    def _load(message_id: str) -> Optional[Message]:
        with SessionLocal() as session:
            return session.get(Message, message_id)

    return _load


@pytest.fixture
def load_user() -> Callable[[str], Optional[ChatUser]]:
    def _load(user_id: str) -> Optional[ChatUser]:
        with SessionLocal() as session:
            return session.get(ChatUser, user_id)

    return _load


# ============================================================================
# Time
# ============================================================================


class TickingClock:
    """Deterministic clock: every call advances by one second."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self._current = start
        self._step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self._current += self._step
            return self._current

    def peek(self) -> datetime:
        return self._current


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


# ============================================================================
# Users
# ============================================================================


@pytest.fixture
def make_user(clock) -> Callable[..., str]:
    def _make(user_id: str, display_name: Optional[str] = None) -> str:
        with SessionLocal() as session:
            PresenceService(session, clock).upsert_user(user_id, display_name or user_id.title())
        return user_id

    return _make


@pytest.fixture
def alice(make_user) -> str:
    return make_user("alice", "Alice")


@pytest.fixture
def bob(make_user) -> str:
    return make_user("bob", "Bob")


@pytest.fixture
def carol(make_user) -> str:
    return make_user("carol", "Carol")


# ============================================================================
# Realtime
# ============================================================================


class FakeConnection:
    """In-memory stand-in for a websocket connection."""

    def __init__(
        self,
        connection_id: str,
        verified_user_id: Optional[str] = None,
        fail_sends: bool = False,
    ):
        self.connection_id = connection_id
        self.verified_user_id = verified_user_id
        self.fail_sends = fail_sends
        self.sent: List[Dict[str, Any]] = []

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail_sends:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    def types(self) -> List[str]:
        return [event["type"] for event in self.sent]

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.sent if event["type"] == event_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def make_connection() -> Callable[..., FakeConnection]:
    """Build a connection authenticated as ``user_id`` (or carrying no identity)."""
    counter = iter(range(1, 10_000))

    def _make(user_id: Optional[str] = None, fail_sends: bool = False) -> FakeConnection:
        return FakeConnection(f"conn-{next(counter)}", user_id, fail_sends=fail_sends)

    return _make


@pytest.fixture
def policy() -> LifecyclePolicy:
    return LifecyclePolicy()


@pytest.fixture
def registry(clock) -> ConnectionRegistry:
    store = DatabasePresenceStore(SessionLocal, clock)
    return ConnectionRegistry(presence_store=store, clock=clock)


@pytest.fixture
def router(registry, clock, policy) -> FanoutRouter:
    return FanoutRouter(registry, SessionLocal, clock=clock, policy=policy)


@pytest.fixture
def join(router, make_connection):
    """
    Join a fresh connection as ``user_id`` and return it.

    Every connection joined through this fixture starts from an empty inbox
    afterwards, so presence announcements never leak into later assertions.
    """
    joined: List[FakeConnection] = []

    async def _join(user_id: str) -> FakeConnection:
        connection = make_connection(user_id)
        await router.handle_frame(connection, {"type": "join", "payload": {"userId": user_id}})
        joined.append(connection)
        for each in joined:
            each.clear()
        return connection

    return _join


def _frame(event_type: str, **payload: Any) -> Dict[str, Any]:
    return {"type": event_type, "payload": payload}


@pytest.fixture
def frame() -> Callable[..., Dict[str, Any]]:
    """Build an inbound frame; pass payload fields by their camelCase wire names."""
    return _frame
