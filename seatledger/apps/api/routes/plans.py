from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.apps.api.deps import Principal, get_db, require_super_admin
from seatledger.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from seatledger.domain.capacity import as_utc, ledger_status
from seatledger.domain.models import UsageLedgerEntry
from seatledger.domain.plans import plan_display_name
from seatledger.persistence.repos import ledger as ledger_repo
from seatledger.services.plans import change_plan


router = APIRouter(prefix="/admin/organizations", tags=["plans"], responses=DEFAULT_ERROR_RESPONSES)


class PlanChangeRequest(BaseModel):
    plan_type: str = Field(min_length=1, max_length=64)
    planned_managers: int | None = Field(default=None, ge=0)
    planned_workers: int | None = Field(default=None, ge=0)


class LedgerEntryResponse(BaseModel):
    id: str
    organization_id: str
    plan_type: str
    plan_name: str
    # upcoming | active | expired, derived from the effective range at request time.
    status: str
    planned_managers: int | None
    planned_workers: int | None
    active_managers: int
    active_workers: int
    effective_start: str
    effective_end: str | None
    total_cost: str | None


def _to_response(entry: UsageLedgerEntry, now: datetime) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        organization_id=entry.organization_id,
        plan_type=entry.plan_type,
        plan_name=plan_display_name(entry.plan_type),
        status=ledger_status(entry.effective_start, entry.effective_end, now).value,
        planned_managers=entry.planned_managers,
        planned_workers=entry.planned_workers,
        active_managers=entry.active_managers,
        active_workers=entry.active_workers,
        effective_start=as_utc(entry.effective_start).isoformat(),
        effective_end=as_utc(entry.effective_end).isoformat() if entry.effective_end else None,
        total_cost=str(entry.total_cost) if entry.total_cost is not None else None,
    )


async def _require_organization(db: AsyncSession, organization_id: str) -> None:
    if await ledger_repo.get_organization(db, organization_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "ORGANIZATION_NOT_FOUND", "message": "Organization not found"},
        )


@router.post("/{organization_id}/plan")
async def change_organization_plan(
    organization_id: str,
    payload: PlanChangeRequest,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> LedgerEntryResponse:
    await _require_organization(db, organization_id)
    now = datetime.now(timezone.utc)
    # PlanChangeError maps to 422 PLAN_CHANGE_INVALID in the app handlers.
    entry = await change_plan(
        db,
        organization_id,
        plan_type=payload.plan_type,
        planned_managers=payload.planned_managers,
        planned_workers=payload.planned_workers,
        now=now,
    )
    return _to_response(entry, now)


@router.get("/{organization_id}/ledger")
async def list_ledger_history(
    organization_id: str,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> list[LedgerEntryResponse]:
    await _require_organization(db, organization_id)
    now = datetime.now(timezone.utc)
    entries = await ledger_repo.list_entries(db, organization_id)
    return [_to_response(entry, now) for entry in entries]
