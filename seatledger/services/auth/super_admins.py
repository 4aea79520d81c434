from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.domain.models import SuperAdmin


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def is_super_admin(session: AsyncSession, email: str | None) -> bool:
    # Identities without an e-mail can never be enrolled.
    if not email:
        return False
    result = await session.execute(select(SuperAdmin.email).where(SuperAdmin.email == normalize_email(email)))
    return result.scalar_one_or_none() is not None


async def enroll_super_admin(session: AsyncSession, *, email: str, name: str | None = None) -> SuperAdmin:
    existing = await session.get(SuperAdmin, normalize_email(email))
    if existing is not None:
        return existing
    admin = SuperAdmin(email=normalize_email(email), name=name)
    session.add(admin)
    await session.flush()
    return admin
