from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlmodel import Session

from ..models import ApiKeyModel
from ..services import (
    ApiKeyService,
    IdempotencyGuard,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    SqlAccountStore,
    SqlIdempotencyGuard,
    SqlTransactionLog,
    TransferEngine,
    WalletService,
)
from .config import Settings, get_settings
from .db import get_session
from .errors import AdminAuthError

@lru_cache()
def get_notification_dispatcher() -> NotificationDispatcher:
    return LoggingNotificationDispatcher()

def build_wallet_service(
    session: Session,
    dispatcher: NotificationDispatcher,
    settings: Settings,
) -> WalletService:
    accounts = SqlAccountStore(session)
    ledger = SqlTransactionLog(session)
    guard: IdempotencyGuard = SqlIdempotencyGuard(session)
    engine = TransferEngine.from_settings(settings, accounts, ledger, guard, dispatcher)
    return WalletService(accounts, ledger, guard, engine, settings)

def get_wallet_service(
    session: Session = Depends(get_session),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    settings: Settings = Depends(get_settings),
) -> WalletService:
    return build_wallet_service(session, dispatcher, settings)

def get_api_key_service(session: Session = Depends(get_session)) -> ApiKeyService:
    return ApiKeyService(session, SqlAccountStore(session))

def require_admin(
    admin_token: Optional[str] = Header(None, convert_underscores=False, alias="X-Admin-Token"),
    settings: Settings = Depends(get_settings),
) -> None:
    if settings.admin_token and admin_token != settings.admin_token:
        raise AdminAuthError("Admin token missing or invalid")

def require_api_key(permission: str) -> Callable[..., ApiKeyModel]:
    def _dependency(
        request: Request,
        api_key: Optional[str] = Header(None, convert_underscores=False, alias="X-API-Key"),
        service: ApiKeyService = Depends(get_api_key_service),
    ) -> ApiKeyModel:
        client_ip = request.client.host if request.client else None
        return service.authenticate(api_key, client_ip, permission)

    return _dependency
