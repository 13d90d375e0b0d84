from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Response, status

from ..core.dependencies import get_api_key_service, get_wallet_service
from ..models import (
    MAX_PAGE_SIZE,
    AccountCreate,
    AccountResponse,
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ApiKeyUpdate,
    MoneyMovementRequest,
    ReversalRequest,
    StatementResponse,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
    TransferResult,
)
from ..services import ApiKeyService, WalletService


REPLAY_HEADER = "Idempotent-Replayed"


def to_transfer_response(result: TransferResult, response: Response) -> TransferResponse:
    """Body is identical for the first call and every replay; only the header differs."""
    if result.replayed:
        response.headers[REPLAY_HEADER] = "true"
    return TransferResponse.from_result(result)


router = APIRouter(prefix="/accounts", tags=["accounts"])

@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    service: WalletService = Depends(get_wallet_service),
) -> AccountResponse:
    return service.register_account(payload)

@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: UUID,
    service: WalletService = Depends(get_wallet_service),
) -> AccountResponse:
    return service.get_account(account_id)

@router.post("/{account_id}/withdraw", response_model=TransferResponse)
def withdraw(
    account_id: UUID,
    payload: MoneyMovementRequest,
    response: Response,
    service: WalletService = Depends(get_wallet_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> TransferResponse:
    result = service.withdraw(account_id, payload, idempotency_key)
    return to_transfer_response(result, response)

@router.get("/{account_id}/statement", response_model=StatementResponse)
def get_statement(
    account_id: UUID,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    cursor: str | None = None,
    service: WalletService = Depends(get_wallet_service),
) -> StatementResponse:
    return service.get_statement(account_id, limit=limit, cursor=cursor)

@router.post(
    "/{account_id}/api-keys",
    response_model=ApiKeyCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_api_key(
    account_id: UUID,
    payload: ApiKeyCreate,
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyCreatedResponse:
    return service.create_key(account_id, payload)

@router.get("/{account_id}/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(
    account_id: UUID,
    service: ApiKeyService = Depends(get_api_key_service),
) -> list[ApiKeyResponse]:
    return service.list_keys(account_id)

@router.patch("/{account_id}/api-keys/{key_id}", response_model=ApiKeyResponse)
def update_api_key(
    account_id: UUID,
    key_id: UUID,
    payload: ApiKeyUpdate,
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    return service.update_key(account_id, key_id, payload)

@router.delete("/{account_id}/api-keys/{key_id}", response_model=ApiKeyResponse)
def revoke_api_key(
    account_id: UUID,
    key_id: UUID,
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyResponse:
    return service.revoke_key(account_id, key_id)

transfer_router = APIRouter(prefix="/transfers", tags=["transfers"])

@transfer_router.post("", response_model=TransferResponse)
def create_transfer(
    payload: TransferRequest,
    response: Response,
    service: WalletService = Depends(get_wallet_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> TransferResponse:
    result = service.send_money(payload, idempotency_key)
    return to_transfer_response(result, response)

transaction_router = APIRouter(prefix="/transactions", tags=["transactions"])

@transaction_router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: UUID,
    service: WalletService = Depends(get_wallet_service),
) -> TransactionResponse:
    return service.get_transaction(transaction_id)

@transaction_router.post("/{transaction_id}/reverse", response_model=TransferResponse)
def reverse_transaction(
    transaction_id: UUID,
    payload: ReversalRequest,
    response: Response,
    service: WalletService = Depends(get_wallet_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> TransferResponse:
    result = service.reverse_transaction(transaction_id, payload, idempotency_key)
    return to_transfer_response(result, response)

__all__ = [
    "router",
    "transfer_router",
    "transaction_router",
    "to_transfer_response",
    "REPLAY_HEADER",
]
