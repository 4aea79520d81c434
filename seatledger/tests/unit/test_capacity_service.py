from __future__ import annotations

from datetime import timedelta

import pytest

from seatledger.core.config import UNLIMITED_SENTINEL
from seatledger.core.errors import CapacityExceededError, NoActivePlanError
from seatledger.persistence.db import SessionLocal
from seatledger.services.capacity import CapacityService
from seatledger.tests.utils.seed import current_ledger, seed_organization, utc_now


@pytest.mark.asyncio
async def test_unlimited_workers_admit_at_any_volume() -> None:
    org_id = await seed_organization(
        plan_type="enterprise",
        planned_managers=UNLIMITED_SENTINEL,
        planned_workers=UNLIMITED_SENTINEL,
        ledger_workers=500,
    )
    service = CapacityService()

    async with SessionLocal() as session:
        report = await service.admit(session, org_id, "worker")

    assert report.workers.max is None
    assert report.workers.active == 500
    assert report.workers.can_add is True
    assert report.to_payload()["max_workers"] is None
    assert report.plan_name == "Enterprise"


@pytest.mark.asyncio
async def test_null_planned_counts_mean_unlimited() -> None:
    org_id = await seed_organization(plan_type="custom", planned_managers=None, planned_workers=None, ledger_managers=40)
    async with SessionLocal() as session:
        report = await CapacityService().get_capacity(session, org_id)
    assert report.managers.max is None
    assert report.managers.can_add is True


@pytest.mark.asyncio
async def test_lapsed_plan_raises_no_active_plan() -> None:
    org_id = await seed_organization(
        effective_start=utc_now() - timedelta(days=60),
        effective_end=utc_now() - timedelta(days=30),
    )
    service = CapacityService()

    async with SessionLocal() as session:
        with pytest.raises(NoActivePlanError) as exc_info:
            await service.get_capacity(session, org_id)
        with pytest.raises(NoActivePlanError):
            await service.admit(session, org_id, "manager")

    assert str(exc_info.value) == "No subscription plan found for this organization"
    assert exc_info.value.organization_id == org_id


@pytest.mark.asyncio
async def test_organization_without_ledger_raises_no_active_plan() -> None:
    org_id = await seed_organization(plan_type=None)
    async with SessionLocal() as session:
        with pytest.raises(NoActivePlanError):
            await CapacityService().get_capacity(session, org_id)


@pytest.mark.asyncio
async def test_one_seat_left_is_never_denied() -> None:
    org_id = await seed_organization(planned_managers=2, planned_workers=10, ledger_managers=1, ledger_workers=9)
    service = CapacityService()

    async with SessionLocal() as session:
        manager_report = await service.admit(session, org_id, "manager")
        worker_report = await service.admit(session, org_id, "worker")

    assert manager_report.managers.can_add is True
    assert worker_report.workers.can_add is True


@pytest.mark.asyncio
async def test_full_plan_denies_with_figures() -> None:
    org_id = await seed_organization(plan_type="starter", planned_managers=2, planned_workers=10, ledger_workers=10)
    service = CapacityService()

    async with SessionLocal() as session:
        with pytest.raises(CapacityExceededError) as exc_info:
            await service.admit(session, org_id, "worker")
        # The other entity type is unaffected.
        await service.admit(session, org_id, "manager")

    assert exc_info.value.to_detail() == {
        "organization_id": org_id,
        "entity_type": "worker",
        "planned": 10,
        "active": 10,
        "max": 10,
        "plan_name": "Starter",
    }


@pytest.mark.asyncio
async def test_capacity_reads_do_not_touch_the_ledger() -> None:
    org_id = await seed_organization(ledger_managers=1, ledger_workers=3, true_managers=2, true_workers=7)
    before = await current_ledger(org_id)

    async with SessionLocal() as session:
        await CapacityService().get_capacity(session, org_id)

    after = await current_ledger(org_id)
    assert (after.active_managers, after.active_workers) == (before.active_managers, before.active_workers)
    assert after.updated_at == before.updated_at


@pytest.mark.asyncio
async def test_effective_range_follows_injected_clock() -> None:
    start = utc_now() + timedelta(days=5)
    org_id = await seed_organization(effective_start=start)

    async with SessionLocal() as session:
        with pytest.raises(NoActivePlanError):
            await CapacityService().get_capacity(session, org_id)
        later = CapacityService(time_provider=lambda: start + timedelta(hours=1))
        report = await later.get_capacity(session, org_id)

    assert report.organization_id == org_id


@pytest.mark.asyncio
async def test_unknown_entity_type_is_rejected() -> None:
    org_id = await seed_organization()
    async with SessionLocal() as session:
        with pytest.raises(ValueError):
            await CapacityService().admit(session, org_id, "contractor")  # type: ignore[arg-type]
