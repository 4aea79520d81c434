from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.core.errors import PlanChangeError
from seatledger.domain.capacity import as_utc
from seatledger.domain.models import Organization, UsageLedgerEntry
from seatledger.domain.plans import resolve_plan_limits
from seatledger.persistence.repos import ledger as ledger_repo


logger = logging.getLogger(__name__)


async def create_organization(
    session: AsyncSession,
    *,
    name: str,
    organization_id: str | None = None,
) -> Organization:
    org = Organization(id=organization_id or uuid4().hex, name=name)
    session.add(org)
    await session.commit()
    return org


async def change_plan(
    session: AsyncSession,
    organization_id: str,
    *,
    plan_type: str,
    planned_managers: int | None = None,
    planned_workers: int | None = None,
    now: datetime | None = None,
) -> UsageLedgerEntry:
    """Close the current ledger range at ``now`` and open a new one for ``plan_type``.

    The new row starts with the cached active counts of the row it replaces so
    admission keeps working between the change and the next reconciliation
    pass. ``total_cost`` is the tier's flat price; periods are not prorated.
    Also used for the first assignment, when there is no row to close.
    """
    now = now or datetime.now(timezone.utc)
    org = await ledger_repo.get_organization(session, organization_id)
    if org is None:
        raise PlanChangeError(f"Organization {organization_id} not found")
    for value in (planned_managers, planned_workers):
        if value is not None and value < 0:
            raise PlanChangeError("Planned counts must be non-negative")
    try:
        managers, workers, total_cost = resolve_plan_limits(plan_type, planned_managers, planned_workers)
    except ValueError as exc:
        raise PlanChangeError(str(exc)) from exc

    # An open-ended row starting now would overlap an already scheduled one.
    upcoming = await ledger_repo.get_upcoming_entry(session, organization_id, now=now)
    if upcoming is not None:
        raise PlanChangeError(
            f"Organization {organization_id} already has a ledger entry starting at "
            f"{as_utc(upcoming.effective_start).isoformat()}"
        )

    current = await ledger_repo.get_current_entry(session, organization_id, now=now, for_update=True)
    new_entry = UsageLedgerEntry(
        id=uuid4().hex,
        organization_id=organization_id,
        plan_type=plan_type.lower(),
        planned_managers=managers,
        planned_workers=workers,
        active_managers=current.active_managers if current is not None else 0,
        active_workers=current.active_workers if current is not None else 0,
        effective_start=now,
        effective_end=None,
        total_cost=total_cost,
    )
    session.add(new_entry)
    # Flush the new row first so the self-referencing link has a target.
    await session.flush()
    if current is not None:
        # Half-open ranges: the old row ends exactly where the new one starts.
        current.effective_end = now
        current.superseded_by = new_entry.id
    await session.commit()
    logger.info(
        "plan_changed org_id=%s plan_type=%s previous_entry=%s entry=%s",
        organization_id,
        new_entry.plan_type,
        current.id if current is not None else None,
        new_entry.id,
    )
    return new_entry
