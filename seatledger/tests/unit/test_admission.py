from __future__ import annotations

import asyncio

import pytest

from seatledger.core.errors import CapacityExceededError, NoActivePlanError
from seatledger.domain.models import Worker
from seatledger.persistence.db import SessionLocal
from seatledger.persistence.repos import accounts as accounts_repo
from seatledger.services.accounts import create_account, deactivate_account
from seatledger.services.capacity import admit
from seatledger.services.reconciliation import ReconciliationTrigger, reconcile_usage
from seatledger.tests.utils.seed import audit_entries, current_ledger, seed_organization


async def _true_workers(org_id: str) -> int:
    async with SessionLocal() as session:
        return await accounts_repo.count_active_workers(session, org_id)


async def _create_worker(org_id: str, mode: str = "soft") -> Worker:
    async with SessionLocal() as session:
        return await create_account(session, org_id, "worker", name="racer", mode=mode)


@pytest.mark.asyncio
async def test_concurrent_soft_admissions_overshoot_by_racers_minus_one() -> None:
    racers = 3
    org_id = await seed_organization(planned_workers=5, ledger_workers=4, true_workers=4)

    outcomes = await asyncio.gather(
        *(_create_worker(org_id) for _ in range(racers)),
        return_exceptions=True,
    )

    created = [item for item in outcomes if isinstance(item, Worker)]
    true_count = await _true_workers(org_id)
    # Every racer reads the same stale 4 of 5, so all of them are admitted.
    assert len(created) == racers
    assert true_count == 4 + racers
    assert true_count - 5 == racers - 1

    result = await reconcile_usage(ReconciliationTrigger.scheduled())
    assert result.reconciled[0].new_workers == true_count
    entries = await audit_entries(org_id)
    assert entries[0].metadata_json["overshoot"] == racers - 1

    # Once the ledger holds the true count the next admission is denied.
    async with SessionLocal() as session:
        with pytest.raises(CapacityExceededError) as exc_info:
            await admit(session, org_id, "worker")
    assert exc_info.value.active == true_count
    assert exc_info.value.max == 5


@pytest.mark.asyncio
async def test_soft_admission_trusts_the_cached_ledger() -> None:
    # Ledger says 0 of 2 although Ground Truth already has 2; soft mode admits.
    org_id = await seed_organization(planned_workers=2, ledger_workers=0, true_workers=2)
    worker = await _create_worker(org_id, mode="soft")
    assert worker.is_active is True
    assert await _true_workers(org_id) == 3


@pytest.mark.asyncio
async def test_strict_admission_counts_ground_truth() -> None:
    org_id = await seed_organization(plan_type="starter", planned_workers=2, ledger_workers=0, true_workers=2)

    with pytest.raises(CapacityExceededError) as exc_info:
        await _create_worker(org_id, mode="strict")

    assert exc_info.value.active == 2
    assert exc_info.value.max == 2
    assert exc_info.value.plan_name == "Starter"
    assert await _true_workers(org_id) == 2


@pytest.mark.asyncio
async def test_strict_admission_inserts_below_ceiling() -> None:
    org_id = await seed_organization(planned_workers=3, ledger_workers=3, true_workers=1)
    await _create_worker(org_id, mode="strict")
    await _create_worker(org_id, mode="strict")

    with pytest.raises(CapacityExceededError):
        await _create_worker(org_id, mode="strict")
    assert await _true_workers(org_id) == 3


@pytest.mark.asyncio
async def test_strict_admission_without_plan_fails() -> None:
    org_id = await seed_organization(plan_type=None)
    with pytest.raises(NoActivePlanError):
        await _create_worker(org_id, mode="strict")


@pytest.mark.asyncio
async def test_soft_admission_denial_creates_nothing() -> None:
    org_id = await seed_organization(planned_workers=2, ledger_workers=2, true_workers=2)
    with pytest.raises(CapacityExceededError):
        await _create_worker(org_id)
    assert await _true_workers(org_id) == 2


@pytest.mark.asyncio
async def test_deactivation_frees_a_seat_after_reconciliation() -> None:
    org_id = await seed_organization(planned_workers=2, ledger_workers=2, true_workers=0)
    first = await _create_worker(org_id, mode="strict")
    await _create_worker(org_id, mode="strict")

    async with SessionLocal() as session:
        deactivated = await deactivate_account(session, org_id, "worker", first.id)
        missing = await deactivate_account(session, org_id, "worker", "no-such-account")
    assert deactivated is not None and deactivated.is_active is False
    assert missing is None

    # The cached ledger is still full until reconciliation catches up.
    with pytest.raises(CapacityExceededError):
        await _create_worker(org_id, mode="soft")
    await reconcile_usage(ReconciliationTrigger.scheduled())
    assert (await current_ledger(org_id)).active_workers == 1
    await _create_worker(org_id, mode="soft")
