"""
Test configuration and fixtures.

Provides:
- SQLite database file shared by the test session and the scheduler's own sessions
- Table cleanup after each test (services commit, so no savepoint rollback)
- In-memory fake message dispatcher
- HTTPX AsyncClient bound to the ASGI app
"""
import os
import tempfile
import uuid
from typing import AsyncGenerator, Callable, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# Settings are read at import time: configure the environment first
_DB_DIR = tempfile.mkdtemp(prefix="followups-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite:///{os.path.join(_DB_DIR, 'followups.db')}"
)
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["MESSAGE_TRANSPORT"] = "dry_run"
os.environ["SENTRY_DSN"] = ""

from followups.core.exceptions import DispatchError  # noqa: E402
from followups.db.base import Base  # noqa: E402
from followups.db.session import SessionLocal, engine  # noqa: E402
import followups.db.models  # noqa: E402,F401
from followups.main import app  # noqa: E402
from followups.routers import internal  # noqa: E402
from followups.schemas.sequence import SequenceCreate  # noqa: E402
from followups.services import sequence_service  # noqa: E402
from followups.services.dispatchers import ContactRef, DispatchResult  # noqa: E402
from followups.services.scheduler import Scheduler  # noqa: E402


INTERNAL_SECRET = "test-internal-secret"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def _schema() -> Generator[None, None, None]:
    """Create all tables once per test session."""
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def _clean_tables() -> Generator[None, None, None]:
    """Empty every table after each test."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def org_id() -> uuid.UUID:
    return uuid.uuid4()


# =============================================================================
# Sequence Fixtures
# =============================================================================

def sequence_payload(**overrides) -> dict:
    """Two-step abandoned-cart sequence as a create payload."""
    payload = {
        "name": "Carrito Abandonado",
        "description": "Recover abandoned carts",
        "trigger_type": "keyword",
        "trigger_config": {"keywords": ["precio", "carrito"]},
        "strategy": "moderate",
        "steps": [
            {
                "delay_amount": 1,
                "delay_unit": "hours",
                "message_template": "Hola {nombre}, ¿sigues interesado?",
                "available_variables": ["nombre"],
            },
            {
                "delay_amount": 1,
                "delay_unit": "days",
                "message_template": "Última oportunidad, {nombre}!",
                "available_variables": ["nombre"],
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope="function")
def make_sequence(db: Session, org_id: uuid.UUID) -> Callable:
    """Factory creating a sequence through the service layer."""

    def _make(owner_org_id: uuid.UUID | None = None, **overrides):
        data = SequenceCreate.model_validate(sequence_payload(**overrides))
        return sequence_service.create_sequence(db, owner_org_id or org_id, data)

    return _make


# =============================================================================
# Dispatcher Fixtures
# =============================================================================

class FakeDispatcher:
    """Records sends; can be told to fail or to run a hook before sending."""

    def __init__(self):
        self.sent: list[tuple[ContactRef, str]] = []
        self.failures: list[Exception] = []
        self.failing_phones: set[str] = set()
        self.before_send: Callable[[ContactRef, str], None] | None = None

    def fail_next(self, exc: Exception | None = None, times: int = 1) -> None:
        for _ in range(times):
            self.failures.append(exc or DispatchError("transport unavailable"))

    async def send(self, contact: ContactRef, text: str) -> DispatchResult:
        if self.before_send is not None:
            self.before_send(contact, text)
        if contact.phone in self.failing_phones:
            raise DispatchError(f"number {contact.phone} unreachable")
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append((contact, text))
        return DispatchResult(external_message_id=f"wamid.{len(self.sent)}")

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


@pytest.fixture(scope="function")
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture(scope="function")
def scheduler(dispatcher: FakeDispatcher) -> Scheduler:
    return Scheduler(dispatcher, max_concurrency=1, batch_size=50)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(scheduler: Scheduler) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the app; process-pending uses the fake dispatcher."""
    app.dependency_overrides[internal.get_scheduler] = lambda: scheduler

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def org_headers(org_id: uuid.UUID) -> dict[str, str]:
    return {"X-Organization-Id": str(org_id)}
