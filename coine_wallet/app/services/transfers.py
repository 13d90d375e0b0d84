"""All-or-nothing money movement over the account, ledger and idempotency stores.

A transfer is a small saga:

1. validate the request (no storage access),
2. claim the idempotency key, or replay / reject if it is already known,
3. insert a ``pending`` ledger row,
4. debit the sender with a compare-and-swap, retrying version conflicts,
5. credit the receiver the same way,
6. mark the row ``completed`` and store the result under the key.

If step 5 fails for any reason, including a storage timeout, the debit is
undone by a compensating credit to the sender and the row is marked
``failed``. If the compensating credit fails too the transfer is left
partially applied; that is escalated as ``ReconciliationRequiredError``
and never retried automatically.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from uuid import UUID

from ..core.config import Settings
from ..core.errors import (
    AccountBlockedError,
    AmountOutOfRangeError,
    ConcurrencyConflict,
    ConflictExhaustedError,
    CreditFailedError,
    DuplicateInFlightError,
    InsufficientFundsError,
    InvalidAmountError,
    ReconciliationRequiredError,
    SelfTransferError,
    TransactionNotReversibleError,
    WalletError,
    error_from_payload,
)
from ..models import (
    AccountState,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
    TransferResult,
)
from .accounts import AccountStore
from .idempotency import IdempotencyGuard, InFlight, Terminal
from .ledger import TransactionLog
from .notifications import (
    LowBalanceWarning,
    NotificationDispatcher,
    ReconciliationRequired,
    TransferCompleted,
    TransferFailed,
    WalletEvent,
    event_name,
)


logger = logging.getLogger(__name__)


class TransferEngine:
    def __init__(
        self,
        accounts: AccountStore,
        ledger: TransactionLog,
        guard: IdempotencyGuard,
        dispatcher: Optional[NotificationDispatcher] = None,
        *,
        max_conflict_retries: int = 5,
        min_amount: int = 1,
        max_amount: Optional[int] = None,
        low_balance_threshold: Optional[int] = None,
    ) -> None:
        self.accounts = accounts
        self.ledger = ledger
        self.guard = guard
        self.dispatcher = dispatcher
        self.max_conflict_retries = max_conflict_retries
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.low_balance_threshold = low_balance_threshold

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        accounts: AccountStore,
        ledger: TransactionLog,
        guard: IdempotencyGuard,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> "TransferEngine":
        return cls(
            accounts,
            ledger,
            guard,
            dispatcher,
            max_conflict_retries=settings.max_conflict_retries,
            min_amount=settings.min_transfer_amount,
            max_amount=settings.max_transfer_amount,
            low_balance_threshold=settings.low_balance_threshold,
        )

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _encode_signature(self, *parts: Any) -> str:
        return json.dumps([str(p) if isinstance(p, UUID) else p for p in parts])

    def _validate_amount(self, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmountError(
                "Amount must be a positive number of minor units",
                details={"amount": amount},
            )
        if amount < self.min_amount or (
            self.max_amount is not None and amount > self.max_amount
        ):
            raise AmountOutOfRangeError(
                "Amount is outside the allowed range",
                details={
                    "amount": amount,
                    "min_amount": self.min_amount,
                    "max_amount": self.max_amount,
                },
            )

    def _begin(self, route: str, key: str, signature: str) -> Optional[TransferResult]:
        """Claim ``key``; returns the stored result if the request already finished."""
        state = self.guard.begin_or_get(key, signature)
        if isinstance(state, Terminal):
            logger.info(
                f"idempotent.{route}.hit",
                extra={"idempotency_key": key, "transaction_id": str(state.transaction_id)},
            )
            payload = state.payload
            if payload.get("outcome") == "completed":
                result = TransferResult.model_validate(payload["result"])
                return result.model_copy(update={"replayed": True})
            raise error_from_payload(payload["error"])
        if isinstance(state, InFlight):
            raise DuplicateInFlightError(
                "A request with this idempotency key is still being processed",
                details={"idempotency_key": key},
            )
        return None

    def _notify(self, event: WalletEvent) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.notify(event)
        except Exception:
            logger.exception("notification.failed", extra={"event": event_name(event)})

    def _apply_with_retry(self, account_id: UUID, delta: int) -> AccountState:
        for attempt in range(self.max_conflict_retries + 1):
            account = self.accounts.get_account(account_id)
            try:
                return self.accounts.try_adjust_balance(account_id, delta, account.version)
            except ConcurrencyConflict:
                logger.debug(
                    "account.version_conflict",
                    extra={"account_id": str(account_id), "attempt": attempt},
                )
        raise ConflictExhaustedError(
            f"Account {account_id} stayed contended after {self.max_conflict_retries} retries",
            details={"account_id": str(account_id)},
        )

    def _fail(
        self,
        record: TransactionRecord,
        error: WalletError,
        *,
        terminal: bool,
    ) -> None:
        """Mark ``record`` failed and either cache ``error`` under the key or free the key."""
        error.details.setdefault("transaction_id", str(record.id))
        self.ledger.transition(
            record.id,
            TransactionStatus.PENDING,
            TransactionStatus.FAILED,
            failure_reason=error.error_code,
        )
        if terminal:
            self.guard.complete(
                record.idempotency_key,
                record.id,
                {"outcome": "failed", "error": error.to_dict()},
            )
        else:
            self.guard.release(record.idempotency_key)
        logger.warning(
            f"{record.kind.value}.failed",
            extra={
                "transaction_id": str(record.id),
                "sender_account_id": str(record.sender_account_id),
                "amount": record.amount,
                "reason": error.error_code,
            },
        )
        self._notify(
            TransferFailed(
                transaction_id=record.id,
                kind=record.kind.value,
                sender_account_id=record.sender_account_id,
                receiver_account_id=record.receiver_account_id,
                amount=record.amount,
                reason=error.error_code,
            )
        )

    def _abandon(self, record: TransactionRecord, error: WalletError, *, terminal: bool) -> None:
        """``_fail`` for a request that moved no money.

        If the bookkeeping itself fails the key is freed, since a retry cannot
        double-apply anything.
        """
        try:
            self._fail(record, error, terminal=terminal)
        except Exception:
            logger.exception(
                f"{record.kind.value}.failure_bookkeeping_failed",
                extra={"transaction_id": str(record.id), "reason": error.error_code},
            )
            try:
                self.guard.release(record.idempotency_key)
            except Exception:
                logger.exception(
                    "idempotency.release_failed",
                    extra={"idempotency_key": record.idempotency_key},
                )

    def _escalate(
        self,
        record: TransactionRecord,
        cause: BaseException,
        message: str = "Transfer was debited but could be neither credited nor compensated",
        *,
        balances_applied: bool = False,
    ) -> ReconciliationRequiredError:
        """Raise the operator alert for a request whose outcome is only partly recorded.

        The key is made terminal so the request is never re-executed. The row
        is marked failed unless both legs were applied, in which case it is
        left for the operator to settle.
        """
        error = ReconciliationRequiredError(
            message,
            details={
                "transaction_id": str(record.id),
                "sender_account_id": str(record.sender_account_id),
                "amount": record.amount,
                "balances_applied": balances_applied,
                "cause": repr(cause),
            },
        )
        logger.critical(
            "transfer.reconciliation_required",
            extra={
                "transaction_id": str(record.id),
                "sender_account_id": str(record.sender_account_id),
                "amount": record.amount,
                "balances_applied": balances_applied,
            },
        )
        # the stores may be the thing that is down; the alert must still go out
        if not balances_applied:
            try:
                self.ledger.transition(
                    record.id,
                    TransactionStatus.PENDING,
                    TransactionStatus.FAILED,
                    failure_reason=error.error_code,
                )
            except Exception:
                logger.exception(
                    "transfer.reconciliation_bookkeeping_failed",
                    extra={"transaction_id": str(record.id), "store": "ledger"},
                )
        try:
            self.guard.complete(
                record.idempotency_key,
                record.id,
                {"outcome": "failed", "error": error.to_dict()},
            )
        except Exception:
            logger.exception(
                "transfer.reconciliation_bookkeeping_failed",
                extra={"transaction_id": str(record.id), "store": "idempotency"},
            )
        self._notify(
            ReconciliationRequired(
                transaction_id=record.id,
                sender_account_id=record.sender_account_id,
                receiver_account_id=record.receiver_account_id,
                amount=record.amount,
                reason=repr(cause),
            )
        )
        return error

    def _compensate(self, record: TransactionRecord, cause: BaseException) -> None:
        logger.warning(
            "transfer.credit_failed",
            extra={"transaction_id": str(record.id), "cause": repr(cause)},
        )
        try:
            self._apply_with_retry(record.sender_account_id, record.amount)
        except Exception as exc:
            raise self._escalate(record, exc) from exc

        logger.warning(
            "transfer.compensated",
            extra={
                "transaction_id": str(record.id),
                "sender_account_id": str(record.sender_account_id),
                "amount": record.amount,
            },
        )
        error = CreditFailedError(
            "Receiver could not be credited; the sender debit was reversed",
            details={"receiver_account_id": str(record.receiver_account_id)},
        )
        try:
            self._fail(record, error, terminal=True)
        except Exception as exc:
            raise self._escalate(
                record, exc, "Transfer was compensated but its failure could not be recorded"
            ) from exc
        raise error from cause

    def _execute(
        self,
        *,
        kind: TransactionKind,
        sender_id: UUID,
        receiver_id: Optional[UUID],
        amount: int,
        idempotency_key: str,
        note: Optional[str],
        reverses_transaction_id: Optional[UUID] = None,
        enforce_unblocked: bool = True,
    ) -> TransferResult:
        # Nothing has moved yet: any failure here frees the key for a retry.
        try:
            sender = self.accounts.get_account(sender_id)
            if receiver_id is not None:
                self.accounts.get_account(receiver_id)
            if enforce_unblocked and sender.is_blocked:
                raise AccountBlockedError(
                    f"Account {sender_id} is blocked",
                    details={"account_id": str(sender_id)},
                )
            record = self.ledger.insert(
                kind=kind,
                sender_account_id=sender_id,
                receiver_account_id=receiver_id,
                amount=amount,
                note=note,
                idempotency_key=idempotency_key,
                reverses_transaction_id=reverses_transaction_id,
            )
        except Exception:
            self.guard.release(idempotency_key)
            raise

        try:
            sender_after = self._apply_with_retry(sender_id, -amount)
        except InsufficientFundsError as exc:
            self._abandon(record, exc, terminal=True)
            raise
        except ConflictExhaustedError as exc:
            self._abandon(record, exc, terminal=False)
            raise
        except Exception as exc:
            # a conditional update that raised was rolled back; nothing to undo
            self._abandon(
                record,
                WalletError(f"Debit failed: {exc!r}", error_code="DEBIT_FAILED"),
                terminal=False,
            )
            raise

        if receiver_id is not None:
            try:
                self._apply_with_retry(receiver_id, amount)
            except Exception as exc:
                self._compensate(record, exc)

        # both legs are applied from here on; nothing may be undone or retried
        try:
            completed = self.ledger.transition(
                record.id, TransactionStatus.PENDING, TransactionStatus.COMPLETED
            )
            result = TransferResult(
                transaction=completed or record,
                sender_balance_after=sender_after.balance,
            )
            self.guard.complete(
                idempotency_key,
                record.id,
                {"outcome": "completed", "result": result.model_dump(mode="json")},
            )
        except Exception as exc:
            raise self._escalate(
                record,
                exc,
                "Transfer was applied but could not be recorded as completed",
                balances_applied=True,
            ) from exc
        logger.info(
            f"{kind.value}.completed",
            extra={
                "transaction_id": str(record.id),
                "sender_account_id": str(sender_id),
                "receiver_account_id": str(receiver_id) if receiver_id else None,
                "amount": amount,
            },
        )
        self._notify(
            TransferCompleted(
                transaction_id=record.id,
                kind=kind.value,
                sender_account_id=sender_id,
                receiver_account_id=receiver_id,
                amount=amount,
                sender_balance_after=sender_after.balance,
            )
        )
        if (
            self.low_balance_threshold is not None
            and sender_after.balance < self.low_balance_threshold
        ):
            self._notify(
                LowBalanceWarning(
                    account_id=sender_id,
                    balance=sender_after.balance,
                    threshold=self.low_balance_threshold,
                )
            )
        return result

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def transfer(
        self,
        sender_id: UUID,
        receiver_id: UUID,
        amount: int,
        idempotency_key: str,
        note: Optional[str] = None,
    ) -> TransferResult:
        if sender_id == receiver_id:
            raise SelfTransferError("Cannot transfer to the same account")
        self._validate_amount(amount)

        signature = self._encode_signature("transfer", sender_id, receiver_id, amount, note)
        replay = self._begin("transfer", idempotency_key, signature)
        if replay is not None:
            return replay

        return self._execute(
            kind=TransactionKind.TRANSFER,
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            idempotency_key=idempotency_key,
            note=note,
        )

    def withdraw(
        self,
        account_id: UUID,
        amount: int,
        idempotency_key: str,
        note: Optional[str] = None,
    ) -> TransferResult:
        self._validate_amount(amount)

        signature = self._encode_signature("withdraw", account_id, amount, note)
        replay = self._begin("withdraw", idempotency_key, signature)
        if replay is not None:
            return replay

        return self._execute(
            kind=TransactionKind.WITHDRAWAL,
            sender_id=account_id,
            receiver_id=None,
            amount=amount,
            idempotency_key=idempotency_key,
            note=note,
        )

    def reverse(
        self,
        transaction_id: UUID,
        idempotency_key: str,
        note: Optional[str] = None,
    ) -> TransferResult:
        """Undo a completed transfer by moving the amount back, receiver to sender.

        The original row is claimed ``completed -> reversed`` before any money
        moves so two reversals cannot both run; the claim is given back if the
        reversal fails cleanly.
        """
        signature = self._encode_signature("reverse", transaction_id, note)
        replay = self._begin("reverse", idempotency_key, signature)
        if replay is not None:
            return replay

        try:
            original = self.ledger.get(transaction_id)
            if (
                original.kind != TransactionKind.TRANSFER
                or original.receiver_account_id is None
            ):
                raise TransactionNotReversibleError(
                    f"Only transfers can be reversed, not {original.kind.value}",
                    details={"transaction_id": str(transaction_id)},
                )
            claimed = self.ledger.transition(
                original.id, TransactionStatus.COMPLETED, TransactionStatus.REVERSED
            )
            if claimed is None:
                raise TransactionNotReversibleError(
                    f"Transaction {transaction_id} is {original.status.value} and cannot be reversed",
                    details={"transaction_id": str(transaction_id)},
                )
        except Exception:
            self.guard.release(idempotency_key)
            raise

        try:
            return self._execute(
                kind=TransactionKind.REVERSAL,
                sender_id=original.receiver_account_id,
                receiver_id=original.sender_account_id,
                amount=original.amount,
                idempotency_key=idempotency_key,
                note=note or f"Reversal of {original.id}",
                reverses_transaction_id=original.id,
                enforce_unblocked=False,
            )
        except ReconciliationRequiredError:
            raise
        except Exception:
            self.ledger.transition(
                original.id, TransactionStatus.REVERSED, TransactionStatus.COMPLETED
            )
            raise
