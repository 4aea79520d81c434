from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.domain.models import SubscriptionAuditEntry


async def list_entries(
    session: AsyncSession,
    *,
    organization_id: str,
    action: str | None = None,
    trigger_source: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[SubscriptionAuditEntry]:
    # Scope audit queries to one organization, newest first.
    stmt = select(SubscriptionAuditEntry).where(SubscriptionAuditEntry.organization_id == organization_id)
    if action:
        stmt = stmt.where(SubscriptionAuditEntry.action == action)
    if trigger_source:
        stmt = stmt.where(SubscriptionAuditEntry.trigger_source == trigger_source)
    if created_from:
        stmt = stmt.where(SubscriptionAuditEntry.created_at >= created_from)
    if created_to:
        stmt = stmt.where(SubscriptionAuditEntry.created_at <= created_to)

    stmt = stmt.order_by(SubscriptionAuditEntry.created_at.desc(), SubscriptionAuditEntry.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
