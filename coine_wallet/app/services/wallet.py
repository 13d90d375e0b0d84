from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from ..core.config import Settings, get_settings
from ..core.errors import AccountNotFoundError
from ..core.money import format_minor_units
from ..models import (
    AdminStatsResponse,
    AccountCreate,
    AccountResponse,
    AccountState,
    MoneyMovementRequest,
    PurgeResponse,
    ReversalRequest,
    StatementResponse,
    TransactionResponse,
    TransactionStatus,
    TransferRequest,
    TransferResult,
)
from .accounts import AccountStore
from .idempotency import IdempotencyGuard
from .ledger import TransactionLog
from .transfers import TransferEngine


logger = logging.getLogger(__name__)


class WalletService:
    def __init__(
        self,
        accounts: AccountStore,
        ledger: TransactionLog,
        guard: IdempotencyGuard,
        engine: TransferEngine,
        settings: Optional[Settings] = None,
    ) -> None:
        self.accounts = accounts
        self.ledger = ledger
        self.guard = guard
        self.engine = engine
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def register_account(self, payload: AccountCreate) -> AccountResponse:
        account = self.accounts.create_account(
            payload.email, payload.owner_name, self.settings.initial_balance
        )
        logger.info(
            "account.created",
            extra={"account_id": str(account.id), "owner_name": account.owner_name},
        )
        return AccountResponse.from_state(account)

    def get_account(self, account_id: UUID) -> AccountResponse:
        return AccountResponse.from_state(self.accounts.get_account(account_id))

    def resolve_account(self, reference: str) -> AccountState:
        """Look an account up by id, falling back to email."""
        try:
            account_id = UUID(reference)
        except ValueError:
            return self.accounts.find_by_email(reference)
        return self.accounts.get_account(account_id)

    # ------------------------------------------------------------------
    # Money movement
    # ------------------------------------------------------------------
    def send_money(
        self, payload: TransferRequest, idempotency_key: str
    ) -> TransferResult:
        try:
            receiver = self.resolve_account(payload.receiver)
        except AccountNotFoundError as exc:
            raise AccountNotFoundError(
                "Receiver not found", details={"receiver": payload.receiver}
            ) from exc
        return self.engine.transfer(
            payload.sender_id,
            receiver.id,
            payload.amount,
            idempotency_key,
            payload.note,
        )

    def withdraw(
        self,
        account_id: UUID,
        payload: MoneyMovementRequest,
        idempotency_key: str,
    ) -> TransferResult:
        return self.engine.withdraw(
            account_id, payload.amount, idempotency_key, payload.note
        )

    def reverse_transaction(
        self,
        transaction_id: UUID,
        payload: ReversalRequest,
        idempotency_key: str,
    ) -> TransferResult:
        return self.engine.reverse(transaction_id, idempotency_key, payload.note)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def get_transaction(self, transaction_id: UUID) -> TransactionResponse:
        return TransactionResponse.from_record(self.ledger.get(transaction_id))

    def get_statement(
        self,
        account_id: UUID,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> StatementResponse:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.accounts.get_account(account_id)

        entries = self.ledger.list_for_account(account_id)

        start_index = 0
        if cursor:
            try:
                cursor_id = UUID(cursor)
            except ValueError as exc:
                raise ValueError("Invalid cursor") from exc
            for idx, entry in enumerate(entries):
                if entry.id == cursor_id:
                    start_index = idx + 1
                    break

        slice_entries = entries[start_index : start_index + limit]
        next_cursor = None
        if slice_entries and start_index + limit < len(entries):
            next_cursor = str(slice_entries[-1].id)

        items = [TransactionResponse.from_record(entry) for entry in slice_entries]
        return StatementResponse(items=items, next_cursor=next_cursor)

    # ------------------------------------------------------------------
    # Back office
    # ------------------------------------------------------------------
    def list_accounts(self, limit: int = 50, offset: int = 0) -> list[AccountResponse]:
        return [
            AccountResponse.from_state(a)
            for a in self.accounts.list_accounts(limit=limit, offset=offset)
        ]

    def set_blocked(self, account_id: UUID, blocked: bool) -> AccountResponse:
        account = self.accounts.set_blocked(account_id, blocked)
        logger.info(
            "account.blocked" if blocked else "account.unblocked",
            extra={"account_id": str(account_id)},
        )
        return AccountResponse.from_state(account)

    def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        account_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TransactionResponse]:
        records = self.ledger.list_transactions(
            status=status, account_id=account_id, limit=limit, offset=offset
        )
        return [TransactionResponse.from_record(r) for r in records]

    def get_stats(self) -> AdminStatsResponse:
        """Back-office totals. Transfers and reversals never change ``total_balance``."""
        accounts, blocked, balance = self.accounts.totals()
        by_status = self.ledger.count_by_status()
        return AdminStatsResponse(
            total_accounts=accounts,
            blocked_accounts=blocked,
            total_balance=balance,
            total_balance_display=format_minor_units(balance),
            total_transactions=sum(by_status.values()),
            transactions_by_status=by_status,
        )

    def purge_idempotency(self) -> PurgeResponse:
        retention = timedelta(hours=self.settings.idempotency_retention_hours)
        purged = self.guard.purge_expired(retention)
        logger.info("idempotency.purged", extra={"purged": purged})
        return PurgeResponse(purged=purged)
