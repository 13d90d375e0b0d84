from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import get_wallet_service, require_admin
from ..models import (
    MAX_PAGE_SIZE,
    AccountBlockUpdate,
    AccountResponse,
    AdminStatsResponse,
    PurgeResponse,
    TransactionResponse,
    TransactionStatus,
)
from ..services import WalletService


admin_router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)]
)

@admin_router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    service: WalletService = Depends(get_wallet_service),
) -> list[AccountResponse]:
    return service.list_accounts(limit=limit, offset=offset)

@admin_router.patch("/accounts/{account_id}/block", response_model=AccountResponse)
def set_account_blocked(
    account_id: UUID,
    payload: AccountBlockUpdate,
    service: WalletService = Depends(get_wallet_service),
) -> AccountResponse:
    return service.set_blocked(account_id, payload.blocked)

@admin_router.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    status: Optional[TransactionStatus] = None,
    account_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    service: WalletService = Depends(get_wallet_service),
) -> list[TransactionResponse]:
    return service.list_transactions(
        status=status, account_id=account_id, limit=limit, offset=offset
    )

@admin_router.get("/stats", response_model=AdminStatsResponse)
def get_stats(
    service: WalletService = Depends(get_wallet_service),
) -> AdminStatsResponse:
    return service.get_stats()

@admin_router.post("/maintenance/purge-idempotency", response_model=PurgeResponse)
def purge_idempotency(
    service: WalletService = Depends(get_wallet_service),
) -> PurgeResponse:
    return service.purge_idempotency()

__all__ = ["admin_router"]
