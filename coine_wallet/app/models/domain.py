from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


class TransactionKind(str, Enum):
    TRANSFER = "transfer"
    WITHDRAWAL = "withdrawal"
    REVERSAL = "reversal"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. Naive values are taken to be UTC already, which is
    how SQLite hands them back."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class AccountState(BaseModel):
    """Immutable snapshot of an account row at a given version."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    email: str
    owner_name: str
    balance: int
    version: int
    is_blocked: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime) -> datetime:
        return as_utc(value)


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    kind: TransactionKind
    sender_account_id: UUID
    receiver_account_id: Optional[UUID] = None
    amount: int
    note: Optional[str] = None
    status: TransactionStatus
    idempotency_key: str
    failure_reason: Optional[str] = None
    reverses_transaction_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime) -> datetime:
        return as_utc(value)


class TransferResult(BaseModel):
    """What a finished transfer, withdrawal or reversal hands back to the caller."""

    model_config = ConfigDict(frozen=True)

    transaction: TransactionRecord
    sender_balance_after: Optional[int] = None
    replayed: bool = False
