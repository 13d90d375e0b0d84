from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..core.money import format_minor_units
from .domain import AccountState, TransactionRecord, TransferResult

ApiPermission = Literal["transfer", "balance", "history"]

MAX_PAGE_SIZE = 200

class AccountCreate(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    owner_name: str = Field(..., min_length=2, description="Name of the account holder")

class AccountResponse(BaseModel):
    id: UUID
    email: str
    owner_name: str
    created_at: datetime
    balance: int = Field(..., ge=0, description="Balance in minor units (e.g. cents)")
    balance_display: str
    version: int
    is_blocked: bool

    @classmethod
    def from_state(cls, account: AccountState) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            owner_name=account.owner_name,
            created_at=account.created_at,
            balance=account.balance,
            balance_display=format_minor_units(account.balance),
            version=account.version,
            is_blocked=account.is_blocked,
        )

class TransactionResponse(BaseModel):
    id: UUID
    created_at: datetime
    kind: str
    sender_account_id: UUID
    receiver_account_id: Optional[UUID] = None
    amount: int
    amount_display: str
    note: Optional[str] = Field(default=None, description="Narrative to display on the statement")
    status: str
    failure_reason: Optional[str] = None
    reverses_transaction_id: Optional[UUID] = None

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionResponse":
        return cls(
            id=record.id,
            created_at=record.created_at,
            kind=record.kind.value,
            sender_account_id=record.sender_account_id,
            receiver_account_id=record.receiver_account_id,
            amount=record.amount,
            amount_display=format_minor_units(record.amount),
            note=record.note,
            status=record.status.value,
            failure_reason=record.failure_reason,
            reverses_transaction_id=record.reverses_transaction_id,
        )

class TransferRequest(BaseModel):
    sender_id: UUID
    receiver: str = Field(..., min_length=1, description="Receiver email or account id")
    amount: int = Field(..., description="Amount in minor units")
    note: Optional[str] = Field(default=None, max_length=500)

class ApiTransferRequest(BaseModel):
    receiver: str = Field(..., min_length=1, description="Receiver email or account id")
    amount: int
    note: Optional[str] = Field(default=None, max_length=500)

class MoneyMovementRequest(BaseModel):
    amount: int = Field(..., description="Amount in minor units")
    note: Optional[str] = Field(default=None, max_length=500)

class ReversalRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=500)

class TransferResponse(BaseModel):
    transaction_id: UUID
    status: str
    sender_balance_after: Optional[int] = None
    sender_balance_after_display: Optional[str] = None

    @classmethod
    def from_result(cls, result: TransferResult) -> "TransferResponse":
        balance = result.sender_balance_after
        return cls(
            transaction_id=result.transaction.id,
            status=result.transaction.status.value,
            sender_balance_after=balance,
            sender_balance_after_display=(
                format_minor_units(balance) if balance is not None else None
            ),
        )

class StatementResponse(BaseModel):
    items: list[TransactionResponse]
    next_cursor: Optional[str] = None

class AccountBlockUpdate(BaseModel):
    blocked: bool

class BalanceResponse(BaseModel):
    account_id: UUID
    balance: int
    balance_display: str

class PurgeResponse(BaseModel):
    purged: int

class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=255)
    permissions: list[ApiPermission] = Field(default_factory=lambda: ["transfer"])
    expires_at: Optional[datetime] = None
    ip_restrictions: Optional[list[str]] = None

class ApiKeyResponse(BaseModel):
    id: UUID
    account_id: UUID
    name: str
    key_prefix: str
    permissions: list[str]
    active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime

class ApiKeyCreatedResponse(ApiKeyResponse):
    api_key: str = Field(..., description="Shown once; only a hash is stored")

class ApiKeyUpdate(BaseModel):
    """Partial update; fields left out keep their stored value."""

    name: Optional[str] = Field(default=None, min_length=3, max_length=255)
    permissions: Optional[list[ApiPermission]] = Field(default=None, min_length=1)
    expires_at: Optional[datetime] = None
    ip_restrictions: Optional[list[str]] = None
    active: Optional[bool] = None

class AdminStatsResponse(BaseModel):
    total_accounts: int
    blocked_accounts: int
    total_balance: int
    total_balance_display: str
    total_transactions: int
    transactions_by_status: dict[str, int]
