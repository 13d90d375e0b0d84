"""Account balances and the compare-and-swap that guards them.

``try_adjust_balance`` is the only way a balance changes. It applies a delta
only when the caller's ``expected_version`` is still current and the result
stays non-negative, and bumps the version on success. Callers that lose the
race get ``ConcurrencyConflict`` and must re-read before trying again.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..core.errors import (
    AccountNotFoundError,
    ConcurrencyConflict,
    DuplicateAccountError,
    InsufficientFundsError,
)
from ..models import AccountModel, AccountState


class AccountStore(ABC):
    @abstractmethod
    def create_account(
        self, email: str, owner_name: str, initial_balance: int = 0
    ) -> AccountState: ...

    @abstractmethod
    def get_account(self, account_id: UUID) -> AccountState: ...

    @abstractmethod
    def find_by_email(self, email: str) -> AccountState: ...

    @abstractmethod
    def try_adjust_balance(
        self, account_id: UUID, delta: int, expected_version: int
    ) -> AccountState: ...

    @abstractmethod
    def set_blocked(self, account_id: UUID, blocked: bool) -> AccountState: ...

    @abstractmethod
    def list_accounts(self, limit: int = 50, offset: int = 0) -> list[AccountState]: ...

    @abstractmethod
    def totals(self) -> tuple[int, int, int]:
        """Return (account count, blocked account count, sum of balances)."""


def _conflict(account_id: UUID, expected: int, current: int) -> ConcurrencyConflict:
    return ConcurrencyConflict(
        f"Account {account_id} has been modified",
        details={
            "account_id": str(account_id),
            "expected_version": expected,
            "current_version": current,
        },
    )


def _insufficient(account: AccountState, delta: int) -> InsufficientFundsError:
    return InsufficientFundsError(
        "Insufficient funds",
        details={
            "account_id": str(account.id),
            "required": -delta,
            "available": account.balance,
        },
    )


class SqlAccountStore(AccountStore):
    """Accounts in the ``account`` table; every mutation commits on its own."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create_account(
        self, email: str, owner_name: str, initial_balance: int = 0
    ) -> AccountState:
        account = AccountModel(
            email=email.lower(), owner_name=owner_name, balance=initial_balance
        )
        self.session.add(account)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateAccountError(
                f"An account with email {email} already exists"
            ) from exc
        self.session.refresh(account)
        return AccountState.model_validate(account)

    def _load(self, account_id: UUID) -> AccountModel:
        account = self.session.get(AccountModel, account_id, populate_existing=True)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def get_account(self, account_id: UUID) -> AccountState:
        return AccountState.model_validate(self._load(account_id))

    def find_by_email(self, email: str) -> AccountState:
        stmt = select(AccountModel).where(AccountModel.email == email.lower())
        account = self.session.exec(stmt).first()
        if account is None:
            raise AccountNotFoundError(f"Account {email} not found")
        return AccountState.model_validate(account)

    def try_adjust_balance(
        self, account_id: UUID, delta: int, expected_version: int
    ) -> AccountState:
        table = AccountModel.__table__
        stmt = (
            update(table)
            .where(table.c.id == account_id)
            .where(table.c.version == expected_version)
            .where(table.c.balance + delta >= 0)
            .values(
                balance=table.c.balance + delta,
                version=table.c.version + 1,
                updated_at=datetime.now(UTC),
            )
            .returning(*table.c)
        )
        row = self.session.exec(stmt).first()
        if row is not None:
            self.session.commit()
            return AccountState.model_validate(dict(row._mapping))

        self.session.rollback()
        current = self.get_account(account_id)
        if current.version != expected_version:
            raise _conflict(account_id, expected_version, current.version)
        raise _insufficient(current, delta)

    def set_blocked(self, account_id: UUID, blocked: bool) -> AccountState:
        account = self._load(account_id)
        account.is_blocked = blocked
        account.updated_at = datetime.now(UTC)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return AccountState.model_validate(account)

    def list_accounts(self, limit: int = 50, offset: int = 0) -> list[AccountState]:
        stmt = (
            select(AccountModel)
            .order_by(AccountModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return [AccountState.model_validate(a) for a in self.session.exec(stmt)]

    def totals(self) -> tuple[int, int, int]:
        stmt = select(
            func.count(AccountModel.id),
            func.coalesce(func.sum(case((AccountModel.is_blocked, 1), else_=0)), 0),
            func.coalesce(func.sum(AccountModel.balance), 0),
        )
        count, blocked, balance = self.session.exec(stmt).one()
        return int(count), int(blocked), int(balance)


class InMemoryAccountStore(AccountStore):
    """Process-local accounts.

    The lock is held for a single compare-and-swap only, never across a
    transfer, so contention behaves like the SQL backend.
    """

    def __init__(self) -> None:
        self._accounts: dict[UUID, AccountState] = {}
        self._by_email: dict[str, UUID] = {}
        self._lock = threading.Lock()

    def create_account(
        self, email: str, owner_name: str, initial_balance: int = 0
    ) -> AccountState:
        now = datetime.now(UTC)
        account = AccountState(
            id=uuid4(),
            email=email.lower(),
            owner_name=owner_name,
            balance=initial_balance,
            version=1,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if account.email in self._by_email:
                raise DuplicateAccountError(
                    f"An account with email {email} already exists"
                )
            self._accounts[account.id] = account
            self._by_email[account.email] = account.id
        return account

    def get_account(self, account_id: UUID) -> AccountState:
        try:
            return self._accounts[account_id]
        except KeyError as exc:
            raise AccountNotFoundError(f"Account {account_id} not found") from exc

    def find_by_email(self, email: str) -> AccountState:
        account_id = self._by_email.get(email.lower())
        if account_id is None:
            raise AccountNotFoundError(f"Account {email} not found")
        return self._accounts[account_id]

    def try_adjust_balance(
        self, account_id: UUID, delta: int, expected_version: int
    ) -> AccountState:
        with self._lock:
            current = self.get_account(account_id)
            if current.version != expected_version:
                raise _conflict(account_id, expected_version, current.version)
            if current.balance + delta < 0:
                raise _insufficient(current, delta)
            updated = current.model_copy(
                update={
                    "balance": current.balance + delta,
                    "version": current.version + 1,
                    "updated_at": datetime.now(UTC),
                }
            )
            self._accounts[account_id] = updated
        return updated

    def set_blocked(self, account_id: UUID, blocked: bool) -> AccountState:
        with self._lock:
            current = self.get_account(account_id)
            updated = current.model_copy(
                update={"is_blocked": blocked, "updated_at": datetime.now(UTC)}
            )
            self._accounts[account_id] = updated
        return updated

    def list_accounts(self, limit: int = 50, offset: int = 0) -> list[AccountState]:
        accounts = sorted(
            self._accounts.values(), key=lambda a: a.created_at, reverse=True
        )
        return accounts[offset : offset + limit]

    def totals(self) -> tuple[int, int, int]:
        accounts = list(self._accounts.values())
        return (
            len(accounts),
            sum(1 for a in accounts if a.is_blocked),
            sum(a.balance for a in accounts),
        )
