from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from seatledger.domain.models import ApiKey, SuperAdmin, User
from seatledger.persistence.db import SessionLocal
from seatledger.services.auth.api_keys import generate_api_key


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def create_test_api_key(
    *,
    email: str | None = None,
    super_admin: bool = False,
    name: str = "test-key",
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[str, dict[str, str], str, str]:
    # Provision a user + API key pair, optionally enrolled as a super admin.
    user_id = uuid4().hex
    resolved_email = email or f"user-{user_id[:8]}@example.com"
    key_id, raw_key, key_prefix, key_hash = generate_api_key()

    async with SessionLocal() as session:
        user = User(id=user_id, email=resolved_email, is_active=user_active)
        session.add(user)
        # Flush the user insert before the API key to satisfy FK constraints.
        await session.flush()
        session.add(
            ApiKey(
                id=key_id,
                user_id=user.id,
                key_prefix=key_prefix,
                key_hash=key_hash,
                name=name,
                expires_at=key_expires_at,
                revoked_at=_utc_now() if key_revoked else None,
            )
        )
        if super_admin:
            session.add(SuperAdmin(email=resolved_email, name="Test Admin"))
        await session.commit()

    headers = {"Authorization": f"Bearer {raw_key}"}
    return raw_key, headers, user_id, key_id
