from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.domain.models import Organization, UsageLedgerEntry


async def get_current_entry(
    session: AsyncSession,
    organization_id: str,
    *,
    now: datetime,
    for_update: bool = False,
) -> UsageLedgerEntry | None:
    # Resolve the row whose half-open effective range contains now; newest start wins on overlap.
    stmt = (
        select(UsageLedgerEntry)
        .where(
            UsageLedgerEntry.organization_id == organization_id,
            UsageLedgerEntry.effective_start <= now,
            or_(UsageLedgerEntry.effective_end.is_(None), UsageLedgerEntry.effective_end > now),
        )
        .order_by(UsageLedgerEntry.effective_start.desc(), UsageLedgerEntry.created_at.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_upcoming_entry(
    session: AsyncSession,
    organization_id: str,
    *,
    now: datetime,
) -> UsageLedgerEntry | None:
    # Earliest row that has not started yet.
    result = await session.execute(
        select(UsageLedgerEntry)
        .where(
            UsageLedgerEntry.organization_id == organization_id,
            UsageLedgerEntry.effective_start > now,
        )
        .order_by(UsageLedgerEntry.effective_start.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_entries(
    session: AsyncSession,
    organization_id: str,
) -> list[UsageLedgerEntry]:
    # Full history for an organization, oldest range first.
    result = await session.execute(
        select(UsageLedgerEntry)
        .where(UsageLedgerEntry.organization_id == organization_id)
        .order_by(UsageLedgerEntry.effective_start.asc(), UsageLedgerEntry.created_at.asc())
    )
    return list(result.scalars().all())


async def get_organization(session: AsyncSession, organization_id: str) -> Organization | None:
    return await session.get(Organization, organization_id)


async def list_organizations(
    session: AsyncSession,
    *,
    organization_id: str | None = None,
) -> list[Organization]:
    # Enumerate all organizations, or only the requested one, in a stable order.
    stmt = select(Organization)
    if organization_id is not None:
        stmt = stmt.where(Organization.id == organization_id)
    stmt = stmt.order_by(Organization.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
