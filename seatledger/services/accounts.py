from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Callable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.core.config import get_settings
from seatledger.core.errors import CapacityExceededError, NoActivePlanError
from seatledger.domain.capacity import ENTITY_TYPES, EntityType, build_figures
from seatledger.domain.models import Manager, Worker
from seatledger.domain.plans import plan_display_name
from seatledger.persistence.repos import accounts as accounts_repo
from seatledger.persistence.repos import ledger as ledger_repo
from seatledger.services.capacity import CapacityService, get_capacity_service


logger = logging.getLogger(__name__)

ADMISSION_SOFT = "soft"
ADMISSION_STRICT = "strict"


async def create_account(
    session: AsyncSession,
    organization_id: str,
    entity_type: EntityType,
    *,
    name: str | None = None,
    email: str | None = None,
    mode: str | None = None,
    capacity_service: CapacityService | None = None,
    time_provider: Callable[[], datetime] | None = None,
) -> Manager | Worker:
    """Create a manager or worker account behind the admission gate.

    ``soft`` consults the cached ledger and inserts afterwards; racing callers
    can overshoot the ceiling. ``strict`` locks the ledger row and counts
    Ground Truth inside the inserting transaction instead.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"unknown entity type: {entity_type}")
    resolved_mode = (mode or get_settings().admission_mode).lower()
    if resolved_mode == ADMISSION_STRICT:
        account = await _create_strict(
            session,
            organization_id,
            entity_type,
            name=name,
            email=email,
            now=(time_provider or _utc_now)(),
        )
    else:
        service = capacity_service or get_capacity_service()
        await service.admit(session, organization_id, entity_type)
        account = _new_account(organization_id, entity_type, name=name, email=email)
        session.add(account)
        await session.commit()
    logger.info(
        "account_created org_id=%s entity_type=%s account_id=%s mode=%s",
        organization_id,
        entity_type,
        account.id,
        resolved_mode,
    )
    return account


async def _create_strict(
    session: AsyncSession,
    organization_id: str,
    entity_type: EntityType,
    *,
    name: str | None,
    email: str | None,
    now: datetime,
) -> Manager | Worker:
    settings = get_settings()
    in_transaction = session.in_transaction()
    # Use a nested transaction when prior reads have already opened one.
    tx_context = session.begin_nested() if in_transaction else session.begin()
    async with tx_context:
        # The row lock serializes concurrent strict admissions for one organization.
        entry = await ledger_repo.get_current_entry(session, organization_id, now=now, for_update=True)
        if entry is None:
            raise NoActivePlanError(organization_id)
        planned = entry.planned_managers if entity_type == "manager" else entry.planned_workers
        true_count = await accounts_repo.count_active(session, organization_id, entity_type)
        figures = build_figures(planned, true_count, settings.capacity_unlimited_sentinel)
        if not figures.can_add:
            raise CapacityExceededError(
                organization_id=organization_id,
                entity_type=entity_type,
                planned=figures.planned,
                active=figures.active,
                max=figures.max,
                plan_name=plan_display_name(entry.plan_type),
            )
        account = _new_account(organization_id, entity_type, name=name, email=email)
        session.add(account)
    if in_transaction:
        await session.commit()
    return account


async def deactivate_account(
    session: AsyncSession,
    organization_id: str,
    entity_type: EntityType,
    account_id: str,
) -> Manager | Worker | None:
    # Ground Truth changes only; the ledger catches up on the next reconciliation pass.
    account = await accounts_repo.get_account(session, organization_id, entity_type, account_id)
    if account is None:
        return None
    if account.is_active:
        account.is_active = False
        await session.commit()
        logger.info(
            "account_deactivated org_id=%s entity_type=%s account_id=%s",
            organization_id,
            entity_type,
            account_id,
        )
    return account


def _new_account(
    organization_id: str,
    entity_type: EntityType,
    *,
    name: str | None,
    email: str | None,
) -> Manager | Worker:
    model = accounts_repo.model_for(entity_type)
    return model(id=uuid4().hex, organization_id=organization_id, name=name, email=email, is_active=True)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
