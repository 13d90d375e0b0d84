from .accounts import AccountStore, InMemoryAccountStore, SqlAccountStore
from .api_keys import ApiKeyService
from .idempotency import (
    FreshStart,
    IdempotencyGuard,
    InFlight,
    InMemoryIdempotencyGuard,
    SqlIdempotencyGuard,
    Terminal,
)
from .ledger import InMemoryTransactionLog, SqlTransactionLog, TransactionLog
from .notifications import (
    FanOutDispatcher,
    LoggingNotificationDispatcher,
    LowBalanceWarning,
    NotificationDispatcher,
    ReconciliationRequired,
    TransferCompleted,
    TransferFailed,
)
from .transfers import TransferEngine
from .wallet import WalletService

__all__ = [
    "AccountStore",
    "SqlAccountStore",
    "InMemoryAccountStore",
    "TransactionLog",
    "SqlTransactionLog",
    "InMemoryTransactionLog",
    "IdempotencyGuard",
    "SqlIdempotencyGuard",
    "InMemoryIdempotencyGuard",
    "FreshStart",
    "InFlight",
    "Terminal",
    "NotificationDispatcher",
    "LoggingNotificationDispatcher",
    "FanOutDispatcher",
    "TransferCompleted",
    "TransferFailed",
    "LowBalanceWarning",
    "ReconciliationRequired",
    "TransferEngine",
    "WalletService",
    "ApiKeyService",
]
