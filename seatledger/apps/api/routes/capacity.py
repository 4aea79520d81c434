from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.apps.api.deps import Principal, get_current_principal, get_db
from seatledger.apps.api.openapi import CAPACITY_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from seatledger.services.capacity import CapacityReport, get_capacity_service


router = APIRouter(
    prefix="/organizations",
    tags=["capacity"],
    responses={**DEFAULT_ERROR_RESPONSES, **CAPACITY_ERROR_RESPONSES},
)


class CapacityResponse(BaseModel):
    organization_id: str
    plan_name: str
    planned_managers: int | None
    planned_workers: int | None
    active_managers: int
    active_workers: int
    # Null means unlimited.
    max_managers: int | None
    max_workers: int | None
    can_add_manager: bool
    can_add_worker: bool


class AdmitRequest(BaseModel):
    entity_type: Literal["manager", "worker"]


class AdmitResponse(CapacityResponse):
    allowed: bool
    entity_type: str


def _to_response(report: CapacityReport) -> CapacityResponse:
    return CapacityResponse(**report.to_payload())


@router.get("/{organization_id}/capacity")
async def get_organization_capacity(
    organization_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> CapacityResponse:
    # NoActivePlanError maps to 404 NO_ACTIVE_PLAN in the app handlers.
    report = await get_capacity_service().get_capacity(db, organization_id)
    return _to_response(report)


@router.post("/{organization_id}/capacity/admit")
async def admit_entity(
    organization_id: str,
    payload: AdmitRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AdmitResponse:
    # Denials surface as 402 CAPACITY_EXCEEDED with the current figures.
    report = await get_capacity_service().admit(db, organization_id, payload.entity_type)
    return AdmitResponse(allowed=True, entity_type=payload.entity_type, **report.to_payload())
