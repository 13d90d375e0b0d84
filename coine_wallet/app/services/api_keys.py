from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from ..core.errors import ApiKeyForbiddenError, ApiKeyNotFoundError, InvalidApiKeyError
from ..models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyModel,
    ApiKeyResponse,
    ApiKeyUpdate,
    as_utc,
)
from .accounts import AccountStore


logger = logging.getLogger(__name__)

KEY_PREFIX = "cw_"


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class ApiKeyService:
    """Issues and checks the keys used by the programmatic transfer interface.

    Only a SHA-256 digest of each key is stored; the raw key is returned once,
    from ``create_key``.
    """

    def __init__(self, session: Session, accounts: AccountStore) -> None:
        self.session = session
        self.accounts = accounts

    def _to_response(self, key: ApiKeyModel) -> ApiKeyResponse:
        return ApiKeyResponse(
            id=key.id,
            account_id=key.account_id,
            name=key.name,
            key_prefix=key.key_prefix,
            permissions=list(key.permissions),
            active=key.active,
            expires_at=as_utc(key.expires_at),
            last_used_at=as_utc(key.last_used_at),
            created_at=as_utc(key.created_at),
        )

    def create_key(self, account_id: UUID, payload: ApiKeyCreate) -> ApiKeyCreatedResponse:
        self.accounts.get_account(account_id)

        raw_key = KEY_PREFIX + secrets.token_hex(32)
        key = ApiKeyModel(
            account_id=account_id,
            name=payload.name,
            key_prefix=raw_key[:10],
            key_hash=hash_key(raw_key),
            permissions=sorted(set(payload.permissions)),
            expires_at=as_utc(payload.expires_at),
            ip_restrictions=payload.ip_restrictions,
        )
        self.session.add(key)
        self.session.commit()
        self.session.refresh(key)
        logger.info(
            "api_key.created",
            extra={"account_id": str(account_id), "api_key_id": str(key.id)},
        )
        return ApiKeyCreatedResponse(
            **self._to_response(key).model_dump(), api_key=raw_key
        )

    def list_keys(self, account_id: UUID) -> list[ApiKeyResponse]:
        self.accounts.get_account(account_id)
        stmt = (
            select(ApiKeyModel)
            .where(ApiKeyModel.account_id == account_id)
            .order_by(ApiKeyModel.created_at.desc())
        )
        return [self._to_response(k) for k in self.session.exec(stmt)]

    def _owned_key(self, account_id: UUID, key_id: UUID) -> ApiKeyModel:
        key = self.session.get(ApiKeyModel, key_id)
        if key is None or key.account_id != account_id:
            raise ApiKeyNotFoundError(f"API key {key_id} not found")
        return key

    def update_key(
        self, account_id: UUID, key_id: UUID, payload: ApiKeyUpdate
    ) -> ApiKeyResponse:
        key = self._owned_key(account_id, key_id)
        # null clears the expiry or the IP list; the other fields ignore it
        changes = {
            name: value
            for name, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or name in ("expires_at", "ip_restrictions")
        }
        if "permissions" in changes:
            changes["permissions"] = sorted(set(changes["permissions"]))
        if "expires_at" in changes:
            changes["expires_at"] = as_utc(changes["expires_at"])
        for name, value in changes.items():
            setattr(key, name, value)
        self.session.add(key)
        self.session.commit()
        self.session.refresh(key)
        logger.info(
            "api_key.updated",
            extra={"api_key_id": str(key_id), "fields": sorted(changes)},
        )
        return self._to_response(key)

    def revoke_key(self, account_id: UUID, key_id: UUID) -> ApiKeyResponse:
        key = self._owned_key(account_id, key_id)
        key.active = False
        self.session.add(key)
        self.session.commit()
        self.session.refresh(key)
        logger.info("api_key.revoked", extra={"api_key_id": str(key_id)})
        return self._to_response(key)

    def authenticate(
        self,
        raw_key: Optional[str],
        client_ip: Optional[str],
        permission: str,
    ) -> ApiKeyModel:
        if not raw_key:
            raise InvalidApiKeyError("API key is required")

        stmt = select(ApiKeyModel).where(ApiKeyModel.key_hash == hash_key(raw_key))
        key = self.session.exec(stmt).first()
        if key is None:
            raise InvalidApiKeyError("Invalid API key")
        if not key.active:
            raise ApiKeyForbiddenError("This API key has been deactivated")

        now = datetime.now(UTC)
        expires_at = as_utc(key.expires_at)
        if expires_at is not None and now > expires_at:
            raise ApiKeyForbiddenError("This API key has expired")
        if key.ip_restrictions and client_ip not in key.ip_restrictions:
            raise ApiKeyForbiddenError("Access denied from this IP address")
        if permission not in key.permissions:
            raise ApiKeyForbiddenError(
                f"This API key doesn't have the required '{permission}' permission"
            )

        owner = self.accounts.get_account(key.account_id)
        if owner.is_blocked:
            raise ApiKeyForbiddenError("Account associated with this API key is blocked")

        key.last_used_at = now
        self.session.add(key)
        self.session.commit()
        self.session.refresh(key)
        return key
