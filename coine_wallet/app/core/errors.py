from __future__ import annotations

from typing import Any, Optional


class WalletError(Exception):
    """Base class for every domain error the wallet raises."""

    status_code: int = 400
    default_error_code: str = "WALLET_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detail": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __str__(self) -> str:
        return self.message


class ValidationError(WalletError):
    """Rejected before any storage access; the caller must fix the input."""

    default_error_code = "VALIDATION_ERROR"


class SelfTransferError(ValidationError):
    default_error_code = "SELF_TRANSFER"


class InvalidAmountError(ValidationError):
    default_error_code = "INVALID_AMOUNT"


class AmountOutOfRangeError(ValidationError):
    default_error_code = "AMOUNT_OUT_OF_RANGE"


class AccountNotFoundError(WalletError):
    """Raised when an account id or email is missing from the store."""

    status_code = 404
    default_error_code = "ACCOUNT_NOT_FOUND"


class TransactionNotFoundError(WalletError):
    status_code = 404
    default_error_code = "TRANSACTION_NOT_FOUND"


class ApiKeyNotFoundError(WalletError):
    status_code = 404
    default_error_code = "API_KEY_NOT_FOUND"


class AccountBlockedError(WalletError):
    status_code = 403
    default_error_code = "ACCOUNT_BLOCKED"


class DuplicateAccountError(WalletError):
    status_code = 409
    default_error_code = "DUPLICATE_ACCOUNT"


class InsufficientFundsError(WalletError):
    """Raised when a debit would drop balance below zero."""

    status_code = 409
    default_error_code = "INSUFFICIENT_FUNDS"


class DuplicateIdempotencyKeyError(WalletError):
    """Raised when the same idempotency key is reused with different input."""

    status_code = 409
    default_error_code = "IDEMPOTENCY_KEY_REUSED"


class DuplicateInFlightError(WalletError):
    """Raised when another request holding the same key has not finished yet."""

    status_code = 409
    default_error_code = "DUPLICATE_IN_FLIGHT"


class TransactionNotReversibleError(WalletError):
    status_code = 409
    default_error_code = "NOT_REVERSIBLE"


class ConcurrencyConflict(WalletError):
    """The account version moved on since it was read. Retried by the engine."""

    status_code = 409
    default_error_code = "CONCURRENCY_CONFLICT"


class ConflictExhaustedError(WalletError):
    status_code = 503
    default_error_code = "CONFLICT_EXHAUSTED"


class CreditFailedError(WalletError):
    """The receiver could not be credited; the sender debit was compensated."""

    status_code = 503
    default_error_code = "CREDIT_FAILED"


class ReconciliationRequiredError(WalletError):
    """A debit could be neither completed nor compensated.

    The transfer is left partially applied and needs operator action.
    """

    status_code = 500
    default_error_code = "RECONCILIATION_REQUIRED"


class InvalidApiKeyError(WalletError):
    status_code = 401
    default_error_code = "INVALID_API_KEY"


class ApiKeyForbiddenError(WalletError):
    status_code = 403
    default_error_code = "API_KEY_FORBIDDEN"


class AdminAuthError(WalletError):
    status_code = 403
    default_error_code = "ADMIN_FORBIDDEN"


def _collect(cls: type[WalletError]) -> dict[str, type[WalletError]]:
    registry = {cls.default_error_code: cls}
    for subclass in cls.__subclasses__():
        registry.update(_collect(subclass))
    return registry


def error_from_payload(payload: dict[str, Any]) -> WalletError:
    """Rebuild a stored terminal error so a replay raises what the original raised."""
    error_cls = _collect(WalletError).get(payload["error_code"], WalletError)
    return error_cls(
        payload["detail"],
        error_code=payload["error_code"],
        details=payload.get("details") or {},
    )
