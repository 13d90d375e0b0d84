"""Exactly-once bookkeeping for client-supplied idempotency keys.

A key is in one of three states: never seen, in flight (a request holding it
is still running) or terminal (the stored outcome is replayed verbatim). The
transition from "never seen" to "in flight" is a single insert against a
unique key, so two requests racing on the same key cannot both win.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.errors import DuplicateIdempotencyKeyError
from ..models import IdempotencyRecordModel, as_utc


logger = logging.getLogger(__name__)

IN_FLIGHT = "in_flight"
TERMINAL = "terminal"


@dataclass(frozen=True)
class FreshStart:
    key: str


@dataclass(frozen=True)
class InFlight:
    key: str


@dataclass(frozen=True)
class Terminal:
    key: str
    transaction_id: Optional[UUID]
    payload: dict[str, Any] = field(default_factory=dict)


GuardState = Union[FreshStart, InFlight, Terminal]


def _mismatch(key: str) -> DuplicateIdempotencyKeyError:
    return DuplicateIdempotencyKeyError(
        "Idempotency key was previously used with different parameters",
        details={"idempotency_key": key},
    )


class IdempotencyGuard(ABC):
    @abstractmethod
    def begin_or_get(self, key: str, signature: str) -> GuardState: ...

    @abstractmethod
    def complete(
        self, key: str, transaction_id: Optional[UUID], payload: dict[str, Any]
    ) -> None: ...

    @abstractmethod
    def release(self, key: str) -> None: ...

    @abstractmethod
    def purge_expired(self, retention: timedelta) -> int: ...


class SqlIdempotencyGuard(IdempotencyGuard):
    """Backed by the ``idempotency_record`` primary key."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _fetch(self, key: str) -> Optional[IdempotencyRecordModel]:
        return self.session.get(IdempotencyRecordModel, key, populate_existing=True)

    def begin_or_get(self, key: str, signature: str) -> GuardState:
        table = IdempotencyRecordModel.__table__
        # Core insert: the session may already hold this key from an earlier read
        claim = insert(table).values(
            key=key,
            request_signature=signature,
            state=IN_FLIGHT,
            created_at=datetime.now(UTC),
        )
        try:
            self.session.exec(claim)
            self.session.commit()
            return FreshStart(key)
        except IntegrityError:
            self.session.rollback()

        existing = self._fetch(key)
        if existing is None:
            # purged between our insert and this read; treat as a new attempt
            return self.begin_or_get(key, signature)
        if existing.request_signature != signature:
            raise _mismatch(key)
        if existing.state == TERMINAL:
            return Terminal(
                key,
                existing.transaction_id,
                json.loads(existing.response_payload or "{}"),
            )
        return InFlight(key)

    def complete(
        self, key: str, transaction_id: Optional[UUID], payload: dict[str, Any]
    ) -> None:
        record = self._fetch(key)
        if record is None:
            logger.error("idempotency.complete.missing", extra={"idempotency_key": key})
            return
        record.state = TERMINAL
        record.transaction_id = transaction_id
        record.response_payload = json.dumps(payload, sort_keys=True)
        record.completed_at = datetime.now(UTC)
        self.session.add(record)
        self.session.commit()

    def release(self, key: str) -> None:
        table = IdempotencyRecordModel.__table__
        self.session.exec(
            delete(table).where(table.c.key == key).where(table.c.state == IN_FLIGHT)
        )
        self.session.commit()

    def purge_expired(self, retention: timedelta) -> int:
        cutoff = datetime.now(UTC) - retention
        table = IdempotencyRecordModel.__table__
        result = self.session.exec(
            delete(table)
            .where(table.c.state == TERMINAL)
            .where(table.c.completed_at < cutoff)
        )
        self.session.commit()
        return result.rowcount


@dataclass
class _Entry:
    signature: str
    state: str
    transaction_id: Optional[UUID] = None
    payload: Optional[str] = None
    completed_at: Optional[datetime] = None


class InMemoryIdempotencyGuard(IdempotencyGuard):
    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def begin_or_get(self, key: str, signature: str) -> GuardState:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = _Entry(signature=signature, state=IN_FLIGHT)
                return FreshStart(key)
        if entry.signature != signature:
            raise _mismatch(key)
        if entry.state == TERMINAL:
            return Terminal(key, entry.transaction_id, json.loads(entry.payload or "{}"))
        return InFlight(key)

    def complete(
        self, key: str, transaction_id: Optional[UUID], payload: dict[str, Any]
    ) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.error("idempotency.complete.missing", extra={"idempotency_key": key})
                return
            entry.state = TERMINAL
            entry.transaction_id = transaction_id
            entry.payload = json.dumps(payload, sort_keys=True)
            entry.completed_at = datetime.now(UTC)

    def release(self, key: str) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.state == IN_FLIGHT:
                del self._entries[key]

    def purge_expired(self, retention: timedelta) -> int:
        cutoff = datetime.now(UTC) - retention
        with self._lock:
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.state == TERMINAL and as_utc(entry.completed_at) < cutoff
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)
