from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional, Protocol, Union
from uuid import UUID


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferCompleted:
    transaction_id: UUID
    kind: str
    sender_account_id: UUID
    receiver_account_id: Optional[UUID]
    amount: int
    sender_balance_after: int


@dataclass(frozen=True)
class TransferFailed:
    transaction_id: UUID
    kind: str
    sender_account_id: UUID
    receiver_account_id: Optional[UUID]
    amount: int
    reason: str


@dataclass(frozen=True)
class LowBalanceWarning:
    account_id: UUID
    balance: int
    threshold: int


@dataclass(frozen=True)
class ReconciliationRequired:
    """Operator alert: a debit was applied and could not be undone."""

    transaction_id: UUID
    sender_account_id: UUID
    receiver_account_id: Optional[UUID]
    amount: int
    reason: str


WalletEvent = Union[
    TransferCompleted, TransferFailed, LowBalanceWarning, ReconciliationRequired
]


def event_name(event: WalletEvent) -> str:
    return type(event).__name__


class NotificationDispatcher(Protocol):
    def notify(self, event: WalletEvent) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher; stands in for the email channel."""

    def notify(self, event: WalletEvent) -> None:
        payload = {k: str(v) if isinstance(v, UUID) else v for k, v in asdict(event).items()}
        level = logging.CRITICAL if isinstance(event, ReconciliationRequired) else logging.INFO
        logger.log(level, "notification.%s", event_name(event), extra={"event": payload})


class FanOutDispatcher:
    def __init__(self, dispatchers: Iterable[NotificationDispatcher]) -> None:
        self.dispatchers = list(dispatchers)

    def notify(self, event: WalletEvent) -> None:
        for dispatcher in self.dispatchers:
            try:
                dispatcher.notify(event)
            except Exception:
                logger.exception(
                    "notification.dispatch_failed",
                    extra={"event": event_name(event), "dispatcher": type(dispatcher).__name__},
                )
