from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from seatledger.core.errors import PlanChangeError
from seatledger.domain.models import UsageLedgerEntry
from seatledger.persistence.db import SessionLocal
from seatledger.services.capacity import CapacityService
from seatledger.services.plans import change_plan, create_organization
from seatledger.tests.utils.seed import seed_organization, utc_now


async def _rows(org_id: str) -> list[UsageLedgerEntry]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(UsageLedgerEntry)
            .where(UsageLedgerEntry.organization_id == org_id)
            .order_by(UsageLedgerEntry.effective_start.asc())
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_upgrade_closes_current_range_and_carries_counts() -> None:
    org_id = await seed_organization(plan_type="starter", ledger_managers=2, ledger_workers=9)
    changed_at = utc_now()

    async with SessionLocal() as session:
        entry = await change_plan(session, org_id, plan_type="pro", now=changed_at)

    assert entry.planned_managers == 5
    assert entry.planned_workers == 100
    assert entry.active_managers == 2
    assert entry.active_workers == 9
    assert entry.total_cost == Decimal("275")

    old, new = await _rows(org_id)
    assert old.superseded_by == new.id
    assert old.effective_end is not None
    assert new.effective_end is None

    later = CapacityService(time_provider=lambda: changed_at + timedelta(seconds=1))
    async with SessionLocal() as session:
        report = await later.get_capacity(session, org_id)
    assert report.plan_name == "Pro"
    assert report.ledger_entry_id == new.id
    assert report.managers.can_add is True


@pytest.mark.asyncio
async def test_first_assignment_opens_a_single_row() -> None:
    async with SessionLocal() as session:
        org = await create_organization(session, name="Fresh Org")
        entry = await change_plan(session, org.id, plan_type="trial")

    assert entry.active_managers == 0
    assert entry.total_cost == Decimal("0")
    assert len(await _rows(org.id)) == 1


@pytest.mark.asyncio
async def test_enterprise_plan_is_unlimited() -> None:
    org_id = await seed_organization(plan_type="starter", ledger_workers=10)
    changed_at = utc_now()
    async with SessionLocal() as session:
        entry = await change_plan(session, org_id, plan_type="enterprise", now=changed_at)
    assert entry.total_cost is None

    later = CapacityService(time_provider=lambda: changed_at + timedelta(seconds=1))
    async with SessionLocal() as session:
        report = await later.admit(session, org_id, "worker")
    assert report.workers.max is None


@pytest.mark.asyncio
async def test_invalid_plan_changes_are_rejected() -> None:
    org_id = await seed_organization()
    async with SessionLocal() as session:
        with pytest.raises(PlanChangeError):
            await change_plan(session, org_id, plan_type="custom", planned_managers=3)
        with pytest.raises(PlanChangeError):
            await change_plan(session, org_id, plan_type="pro", planned_workers=-1)
        with pytest.raises(PlanChangeError):
            await change_plan(session, "missing-org", plan_type="pro")
    assert len(await _rows(org_id)) == 1


@pytest.mark.asyncio
async def test_change_rejected_when_a_future_range_is_scheduled() -> None:
    starts_at = utc_now() + timedelta(days=7)
    org_id = await seed_organization(plan_type="starter", effective_start=starts_at)

    async with SessionLocal() as session:
        with pytest.raises(PlanChangeError) as exc_info:
            await change_plan(session, org_id, plan_type="pro", now=utc_now())

    assert "already has a ledger entry starting at" in str(exc_info.value)
    rows = await _rows(org_id)
    assert len(rows) == 1
    assert rows[0].plan_type == "starter"
    assert rows[0].effective_end is None
