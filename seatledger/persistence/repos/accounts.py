from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.domain.capacity import ENTITY_MANAGER, ENTITY_WORKER, EntityType
from seatledger.domain.models import Manager, Worker


AccountModel = type[Manager] | type[Worker]


def model_for(entity_type: EntityType) -> AccountModel:
    if entity_type == ENTITY_MANAGER:
        return Manager
    if entity_type == ENTITY_WORKER:
        return Worker
    raise ValueError(f"unknown entity type: {entity_type}")


async def count_active(session: AsyncSession, organization_id: str, entity_type: EntityType) -> int:
    # Ground truth count: active rows only, never the cached ledger value.
    model = model_for(entity_type)
    result = await session.execute(
        select(func.count())
        .select_from(model)
        .where(model.organization_id == organization_id, model.is_active.is_(True))
    )
    return int(result.scalar_one() or 0)


async def count_active_managers(session: AsyncSession, organization_id: str) -> int:
    return await count_active(session, organization_id, ENTITY_MANAGER)


async def count_active_workers(session: AsyncSession, organization_id: str) -> int:
    return await count_active(session, organization_id, ENTITY_WORKER)


async def get_account(
    session: AsyncSession,
    organization_id: str,
    entity_type: EntityType,
    account_id: str,
) -> Manager | Worker | None:
    model = model_for(entity_type)
    result = await session.execute(
        select(model).where(model.id == account_id, model.organization_id == organization_id)
    )
    return result.scalar_one_or_none()
