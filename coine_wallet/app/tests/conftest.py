import threading
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from ..core.db import create_engine_for_url, get_session, set_engine
from ..main import app
from ..services import (
    InMemoryAccountStore,
    InMemoryIdempotencyGuard,
    InMemoryTransactionLog,
    SqlAccountStore,
    SqlIdempotencyGuard,
    SqlTransactionLog,
    TransferEngine,
)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events = []
        self._lock = threading.Lock()

    def notify(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'test.db'}", timeout=30)
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(sql_engine) -> TestClient:
    original_engine = set_engine(sql_engine)

    def _get_session_override():
        with Session(sql_engine) as session:
            yield session

    app.dependency_overrides[get_session] = _get_session_override

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    set_engine(original_engine)


@pytest.fixture
def session(sql_engine):
    with Session(sql_engine) as session:
        yield session


@pytest.fixture
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def accounts() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def ledger() -> InMemoryTransactionLog:
    return InMemoryTransactionLog()


@pytest.fixture
def guard() -> InMemoryIdempotencyGuard:
    return InMemoryIdempotencyGuard()


@pytest.fixture
def engine(accounts, ledger, guard, recorder) -> TransferEngine:
    return TransferEngine(
        accounts,
        ledger,
        guard,
        recorder,
        max_conflict_retries=100,
        low_balance_threshold=100,
    )


@pytest.fixture
def sql_transfer_engine(session, recorder) -> TransferEngine:
    return TransferEngine(
        SqlAccountStore(session),
        SqlTransactionLog(session),
        SqlIdempotencyGuard(session),
        recorder,
    )


def new_key() -> str:
    return str(uuid.uuid4())


def open_account(store, balance: int, name: str | None = None):
    name = name or f"user-{uuid.uuid4().hex[:8]}"
    return store.create_account(f"{name}@example.com", name, balance)
