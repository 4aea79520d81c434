from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncGenerator
import asyncio
import logging
import time

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.core.config import get_settings
from seatledger.core.errors import ForbiddenError, UnauthorizedError
from seatledger.domain.capacity import as_utc
from seatledger.domain.models import ApiKey, User
from seatledger.persistence.db import SessionLocal, get_session
from seatledger.services.auth.api_keys import hash_api_key
from seatledger.services.auth.super_admins import is_super_admin


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Authenticated identity; the e-mail is what the super admin registry is keyed on.
    subject_id: str
    email: str | None = None
    api_key_id: str
    auth_method: str = "api_key"


_auth_cache: dict[str, tuple[float, Principal]] = {}
_auth_cache_lock = asyncio.Lock()


def _auth_error(message: str) -> UnauthorizedError:
    # Mapped to 401 AUTH_UNAUTHORIZED with a Bearer challenge by the app handlers.
    return UnauthorizedError(message)


def _forbidden_error(message: str) -> ForbiddenError:
    return ForbiddenError(message)


async def _get_cached_principal(key_hash: str, ttl_s: int) -> Principal | None:
    # Cache principals briefly to reduce auth DB load between requests.
    if ttl_s <= 0:
        return None
    now = time.time()
    async with _auth_cache_lock:
        entry = _auth_cache.get(key_hash)
        if not entry:
            return None
        expires_at, principal = entry
        if expires_at <= now:
            _auth_cache.pop(key_hash, None)
            return None
        return principal


async def _set_cached_principal(key_hash: str, principal: Principal, ttl_s: int) -> None:
    if ttl_s <= 0:
        return
    async with _auth_cache_lock:
        _auth_cache[key_hash] = (time.time() + ttl_s, principal)


def reset_auth_cache() -> None:
    # Clear cached principals for deterministic tests.
    _auth_cache.clear()


def _parse_bearer_token(header_value: str | None) -> str | None:
    # Enforce Bearer token format for API key authentication.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _principal_from_dev_headers(request: Request) -> Principal:
    # Local development only: trust X-User-Email when auth is switched off.
    email = request.headers.get("X-User-Email")
    if not email:
        raise _auth_error("X-User-Email header is required when authentication is disabled")
    return Principal(
        subject_id=f"dev-{email}",
        email=email.strip().lower(),
        api_key_id="dev-bypass",
        auth_method="dev_bypass",
    )


async def _touch_last_used(api_key_id: str) -> None:
    # Update last_used_at outside the request transaction.
    async with SessionLocal() as session:
        try:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key_id)
                .values(last_used_at=func.now())
            )
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("api_key_touch_failed api_key_id=%s", api_key_id, exc_info=exc)


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    header_value = request.headers.get(settings.auth_api_key_header)
    bearer_token = _parse_bearer_token(header_value)

    # Header identity needs both switches; auth disabled alone still demands a key.
    if not settings.auth_enabled and settings.auth_dev_bypass:
        return _principal_from_dev_headers(request)
    if not bearer_token:
        raise _auth_error("Missing API key")

    key_hash = hash_api_key(bearer_token)
    cached = await _get_cached_principal(key_hash, settings.auth_cache_ttl_s)
    if cached:
        return cached

    try:
        result = await db.execute(
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.key_hash == key_hash)
        )
    except SQLAlchemyError as exc:
        logger.error("auth_lookup_failed path=%s", request.url.path, exc_info=exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        ) from exc

    row = result.first()
    if row is None:
        raise _auth_error("Invalid API key")
    api_key, user = row
    if api_key.revoked_at is not None or not user.is_active:
        raise _auth_error("API key is revoked or inactive")
    if api_key.expires_at is not None and as_utc(api_key.expires_at) <= datetime.now(timezone.utc):
        raise _auth_error("API key has expired")

    principal = Principal(
        subject_id=user.id,
        email=user.email,
        api_key_id=api_key.id,
    )
    await _set_cached_principal(key_hash, principal, settings.auth_cache_ttl_s)
    await _touch_last_used(api_key.id)
    return principal


async def require_super_admin(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    # Registry lookup only; nothing else is read before this passes.
    if not await is_super_admin(db, principal.email):
        logger.warning(
            "super_admin_denied subject_id=%s api_key_id=%s",
            principal.subject_id,
            principal.api_key_id,
        )
        raise _forbidden_error("Super administrator access required")
    return principal
