from fastapi import APIRouter, Depends, Header, Query, Response

from ..core.dependencies import get_wallet_service, require_api_key
from ..core.money import format_minor_units
from ..models import (
    MAX_PAGE_SIZE,
    ApiKeyModel,
    ApiTransferRequest,
    BalanceResponse,
    StatementResponse,
    TransferRequest,
    TransferResponse,
)
from ..services import WalletService
from .routes import to_transfer_response


api_key_router = APIRouter(prefix="/v1", tags=["api-keys"])

@api_key_router.post("/transfer", response_model=TransferResponse)
def api_transfer(
    payload: ApiTransferRequest,
    response: Response,
    api_key: ApiKeyModel = Depends(require_api_key("transfer")),
    service: WalletService = Depends(get_wallet_service),
    idempotency_key: str = Header(..., convert_underscores=False, alias="Idempotency-Key"),
) -> TransferResponse:
    request = TransferRequest(
        sender_id=api_key.account_id,
        receiver=payload.receiver,
        amount=payload.amount,
        note=payload.note,
    )
    result = service.send_money(request, idempotency_key)
    return to_transfer_response(result, response)

@api_key_router.get("/balance", response_model=BalanceResponse)
def api_balance(
    api_key: ApiKeyModel = Depends(require_api_key("balance")),
    service: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    account = service.get_account(api_key.account_id)
    return BalanceResponse(
        account_id=account.id,
        balance=account.balance,
        balance_display=format_minor_units(account.balance),
    )

@api_key_router.get("/history", response_model=StatementResponse)
def api_history(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    cursor: str | None = None,
    api_key: ApiKeyModel = Depends(require_api_key("history")),
    service: WalletService = Depends(get_wallet_service),
) -> StatementResponse:
    return service.get_statement(api_key.account_id, limit=limit, cursor=cursor)

__all__ = ["api_key_router"]
