from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from ..core.errors import TransactionNotFoundError
from ..models import (
    TransactionKind,
    TransactionModel,
    TransactionRecord,
    TransactionStatus,
)


class TransactionLog(ABC):
    """Append-only record of balance-affecting events.

    Rows are never deleted. The only update allowed is a status transition,
    and it is conditional on the status the caller last saw.
    """

    @abstractmethod
    def insert(
        self,
        *,
        kind: TransactionKind,
        sender_account_id: UUID,
        receiver_account_id: Optional[UUID],
        amount: int,
        note: Optional[str],
        idempotency_key: str,
        reverses_transaction_id: Optional[UUID] = None,
    ) -> TransactionRecord: ...

    @abstractmethod
    def get(self, transaction_id: UUID) -> TransactionRecord: ...

    @abstractmethod
    def transition(
        self,
        transaction_id: UUID,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        failure_reason: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        """Move ``from_status`` -> ``to_status``; ``None`` if the row was not in ``from_status``."""

    @abstractmethod
    def list_for_account(self, account_id: UUID) -> list[TransactionRecord]: ...

    @abstractmethod
    def list_transactions(
        self,
        *,
        status: Optional[TransactionStatus] = None,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[TransactionRecord]: ...

    @abstractmethod
    def count_by_status(self) -> dict[str, int]: ...


class SqlTransactionLog(TransactionLog):
    def __init__(self, session: Session) -> None:
        self.session = session

    def insert(
        self,
        *,
        kind: TransactionKind,
        sender_account_id: UUID,
        receiver_account_id: Optional[UUID],
        amount: int,
        note: Optional[str],
        idempotency_key: str,
        reverses_transaction_id: Optional[UUID] = None,
    ) -> TransactionRecord:
        entry = TransactionModel(
            kind=kind.value,
            sender_account_id=sender_account_id,
            receiver_account_id=receiver_account_id,
            amount=amount,
            note=note,
            status=TransactionStatus.PENDING.value,
            idempotency_key=idempotency_key,
            reverses_transaction_id=reverses_transaction_id,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return TransactionRecord.model_validate(entry)

    def get(self, transaction_id: UUID) -> TransactionRecord:
        entry = self.session.get(TransactionModel, transaction_id, populate_existing=True)
        if entry is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return TransactionRecord.model_validate(entry)

    def transition(
        self,
        transaction_id: UUID,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        failure_reason: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        table = TransactionModel.__table__
        values: dict = {"status": to_status.value, "updated_at": datetime.now(UTC)}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason
        stmt = (
            update(table)
            .where(table.c.id == transaction_id)
            .where(table.c.status == from_status.value)
            .values(**values)
            .returning(*table.c)
        )
        row = self.session.exec(stmt).first()
        if row is None:
            self.session.rollback()
            return None
        self.session.commit()
        return TransactionRecord.model_validate(dict(row._mapping))

    def list_for_account(self, account_id: UUID) -> list[TransactionRecord]:
        return self.list_transactions(account_id=account_id, limit=None)

    def list_transactions(
        self,
        *,
        status: Optional[TransactionStatus] = None,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[TransactionRecord]:
        stmt = select(TransactionModel)
        if status is not None:
            stmt = stmt.where(TransactionModel.status == status.value)
        if account_id is not None:
            stmt = stmt.where(
                or_(
                    TransactionModel.sender_account_id == account_id,
                    TransactionModel.receiver_account_id == account_id,
                )
            )
        stmt = stmt.order_by(TransactionModel.created_at.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [TransactionRecord.model_validate(e) for e in self.session.exec(stmt)]

    def count_by_status(self) -> dict[str, int]:
        stmt = select(TransactionModel.status, func.count(TransactionModel.id)).group_by(
            TransactionModel.status
        )
        return {status: int(count) for status, count in self.session.exec(stmt)}


class InMemoryTransactionLog(TransactionLog):
    def __init__(self) -> None:
        self._entries: dict[UUID, TransactionRecord] = {}
        self._lock = threading.Lock()

    def insert(
        self,
        *,
        kind: TransactionKind,
        sender_account_id: UUID,
        receiver_account_id: Optional[UUID],
        amount: int,
        note: Optional[str],
        idempotency_key: str,
        reverses_transaction_id: Optional[UUID] = None,
    ) -> TransactionRecord:
        now = datetime.now(UTC)
        record = TransactionRecord(
            id=uuid4(),
            kind=kind,
            sender_account_id=sender_account_id,
            receiver_account_id=receiver_account_id,
            amount=amount,
            note=note,
            status=TransactionStatus.PENDING,
            idempotency_key=idempotency_key,
            reverses_transaction_id=reverses_transaction_id,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._entries[record.id] = record
        return record

    def get(self, transaction_id: UUID) -> TransactionRecord:
        try:
            return self._entries[transaction_id]
        except KeyError as exc:
            raise TransactionNotFoundError(
                f"Transaction {transaction_id} not found"
            ) from exc

    def transition(
        self,
        transaction_id: UUID,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        failure_reason: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        with self._lock:
            current = self.get(transaction_id)
            if current.status != from_status:
                return None
            changes: dict = {"status": to_status, "updated_at": datetime.now(UTC)}
            if failure_reason is not None:
                changes["failure_reason"] = failure_reason
            updated = current.model_copy(update=changes)
            self._entries[transaction_id] = updated
        return updated

    def list_for_account(self, account_id: UUID) -> list[TransactionRecord]:
        return self.list_transactions(account_id=account_id, limit=None)

    def list_transactions(
        self,
        *,
        status: Optional[TransactionStatus] = None,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[TransactionRecord]:
        # newest first; ties keep the most recently inserted entry ahead
        entries = sorted(
            reversed(list(self._entries.values())),
            key=lambda e: e.created_at,
            reverse=True,
        )
        if status is not None:
            entries = [e for e in entries if e.status == status]
        if account_id is not None:
            entries = [
                e
                for e in entries
                if account_id in (e.sender_account_id, e.receiver_account_id)
            ]
        end = None if limit is None else offset + limit
        return entries[offset:end]

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in list(self._entries.values()):
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        return counts
