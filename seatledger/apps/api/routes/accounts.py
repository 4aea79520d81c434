from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.apps.api.deps import Principal, get_current_principal, get_db
from seatledger.apps.api.openapi import CAPACITY_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from seatledger.domain.capacity import ENTITY_MANAGER, ENTITY_WORKER, EntityType
from seatledger.services.accounts import create_account, deactivate_account


router = APIRouter(
    prefix="/organizations",
    tags=["accounts"],
    responses={**DEFAULT_ERROR_RESPONSES, **CAPACITY_ERROR_RESPONSES},
)


class AccountCreateRequest(BaseModel):
    name: str | None = None
    email: str | None = None


class AccountResponse(BaseModel):
    id: str
    organization_id: str
    entity_type: str
    name: str | None
    email: str | None
    is_active: bool


def _to_response(account, entity_type: EntityType) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        organization_id=account.organization_id,
        entity_type=entity_type,
        name=account.name,
        email=account.email,
        is_active=account.is_active,
    )


async def _create(
    db: AsyncSession,
    organization_id: str,
    entity_type: EntityType,
    payload: AccountCreateRequest,
) -> AccountResponse:
    account = await create_account(
        db,
        organization_id,
        entity_type,
        name=payload.name,
        email=payload.email,
    )
    return _to_response(account, entity_type)


async def _deactivate(
    db: AsyncSession,
    organization_id: str,
    entity_type: EntityType,
    account_id: str,
) -> AccountResponse:
    account = await deactivate_account(db, organization_id, entity_type, account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "ACCOUNT_NOT_FOUND", "message": f"{entity_type.capitalize()} not found"},
        )
    return _to_response(account, entity_type)


@router.post("/{organization_id}/managers", status_code=status.HTTP_201_CREATED)
async def create_manager(
    organization_id: str,
    payload: AccountCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    return await _create(db, organization_id, ENTITY_MANAGER, payload)


@router.post("/{organization_id}/workers", status_code=status.HTTP_201_CREATED)
async def create_worker(
    organization_id: str,
    payload: AccountCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    return await _create(db, organization_id, ENTITY_WORKER, payload)


@router.post("/{organization_id}/managers/{account_id}/deactivate")
async def deactivate_manager(
    organization_id: str,
    account_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    return await _deactivate(db, organization_id, ENTITY_MANAGER, account_id)


@router.post("/{organization_id}/workers/{account_id}/deactivate")
async def deactivate_worker(
    organization_id: str,
    account_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    return await _deactivate(db, organization_id, ENTITY_WORKER, account_id)
