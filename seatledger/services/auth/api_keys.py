from __future__ import annotations

from datetime import datetime
import hashlib
import secrets
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.domain.models import ApiKey, User


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    # Embed the key id in the token so operators can trace secrets safely.
    resolved_id = key_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_key = f"slk_{resolved_id}_{secret}"
    key_prefix = raw_key[:12]
    return resolved_id, raw_key, key_prefix, hash_api_key(raw_key)


async def create_user(session: AsyncSession, *, email: str | None, user_id: str | None = None) -> User:
    user = User(id=user_id or uuid4().hex, email=email.strip().lower() if email else None, is_active=True)
    session.add(user)
    await session.flush()
    return user


async def issue_api_key(
    session: AsyncSession,
    *,
    user_id: str,
    name: str | None = None,
    expires_at: datetime | None = None,
) -> tuple[ApiKey, str]:
    # Only the hash is persisted; the raw key is returned once to the caller.
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    api_key = ApiKey(
        id=key_id,
        user_id=user_id,
        key_prefix=key_prefix,
        key_hash=key_hash,
        name=name,
        expires_at=expires_at,
    )
    session.add(api_key)
    await session.flush()
    return api_key, raw_key
