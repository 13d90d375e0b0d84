from __future__ import annotations
from datetime import datetime, UTC
from typing import Optional
from uuid import UUID, uuid4
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _now() -> datetime:
    return datetime.now(UTC)


class Account(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    email: str = Field(unique=True, index=True)
    owner_name: str
    balance: int = Field(default=0, ge=0)
    version: int = Field(default=1)
    is_blocked: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

class WalletTransaction(SQLModel, table=True):
    __tablename__ = "wallet_transaction"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    created_at: datetime = Field(default_factory=_now, index=True)
    updated_at: datetime = Field(default_factory=_now)
    kind: str
    sender_account_id: UUID = Field(foreign_key="account.id", index=True)
    receiver_account_id: Optional[UUID] = Field(
        default=None, foreign_key="account.id", index=True
    )
    amount: int
    note: Optional[str] = None
    status: str = Field(index=True)
    idempotency_key: str = Field(index=True)
    failure_reason: Optional[str] = None
    reverses_transaction_id: Optional[UUID] = Field(
        default=None, foreign_key="wallet_transaction.id"
    )

class IdempotencyRecord(SQLModel, table=True):
    __tablename__ = "idempotency_record"

    key: str = Field(primary_key=True)
    request_signature: str
    state: str
    transaction_id: Optional[UUID] = None
    response_payload: Optional[str] = None
    created_at: datetime = Field(default_factory=_now, index=True)
    completed_at: Optional[datetime] = None

class ApiKey(SQLModel, table=True):
    __tablename__ = "api_key"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    account_id: UUID = Field(foreign_key="account.id", index=True)
    name: str
    key_prefix: str
    key_hash: str = Field(unique=True, index=True)
    permissions: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    ip_restrictions: Optional[list[str]] = Field(default=None, sa_column=Column(JSON))
    active: bool = Field(default=True)
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_now)
