from .db import Account as AccountModel
from .db import ApiKey as ApiKeyModel
from .db import IdempotencyRecord as IdempotencyRecordModel
from .db import WalletTransaction as TransactionModel
from .domain import (
    AccountState,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
    TransferResult,
    as_utc,
)
from .schemas import (
    MAX_PAGE_SIZE,
    AdminStatsResponse,
    ApiKeyUpdate,
    AccountBlockUpdate,
    AccountCreate,
    AccountResponse,
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ApiTransferRequest,
    BalanceResponse,
    MoneyMovementRequest,
    PurgeResponse,
    ReversalRequest,
    StatementResponse,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
)

__all__ = [
    "MAX_PAGE_SIZE",
    "AdminStatsResponse",
    "ApiKeyUpdate",
    "AccountBlockUpdate",
    "AccountCreate",
    "AccountResponse",
    "ApiKeyCreate",
    "ApiKeyCreatedResponse",
    "ApiKeyResponse",
    "ApiTransferRequest",
    "BalanceResponse",
    "MoneyMovementRequest",
    "PurgeResponse",
    "ReversalRequest",
    "StatementResponse",
    "TransactionResponse",
    "TransferRequest",
    "TransferResponse",
    "AccountState",
    "TransactionKind",
    "TransactionRecord",
    "TransactionStatus",
    "TransferResult",
    "as_utc",
    "AccountModel",
    "TransactionModel",
    "IdempotencyRecordModel",
    "ApiKeyModel",
]
