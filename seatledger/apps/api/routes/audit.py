from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.apps.api.deps import Principal, get_db, require_super_admin
from seatledger.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from seatledger.core.config import get_settings
from seatledger.domain.capacity import as_utc
from seatledger.persistence.repos import audit as audit_repo


router = APIRouter(prefix="/admin/organizations", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class UsageAuditEntryResponse(BaseModel):
    id: int
    organization_id: str
    action: str
    before_count: int | None
    after_count: int | None
    trigger_source: str
    metadata_json: dict[str, Any] | None
    created_at: str


class UsageAuditPage(BaseModel):
    items: list[UsageAuditEntryResponse]
    next_offset: int | None


def _to_response(entry) -> UsageAuditEntryResponse:
    return UsageAuditEntryResponse(
        id=entry.id,
        organization_id=entry.organization_id,
        action=entry.action,
        before_count=entry.before_count,
        after_count=entry.after_count,
        trigger_source=entry.trigger_source,
        metadata_json=entry.metadata_json,
        created_at=as_utc(entry.created_at).isoformat(),
    )


@router.get("/{organization_id}/usage-audit")
async def list_usage_audit(
    organization_id: str,
    action: str | None = None,
    trigger_source: str | None = None,
    created_from: datetime | None = Query(default=None, alias="from"),
    created_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=200),
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> UsageAuditPage:
    # Omitted limit falls back to the configured page size.
    limit = limit or get_settings().audit_page_size
    try:
        entries = await audit_repo.list_entries(
            db,
            organization_id=organization_id,
            action=action,
            trigger_source=trigger_source,
            created_from=created_from,
            created_to=created_to,
            offset=offset,
            limit=limit + 1,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching usage audit") from exc

    # Fetch one extra row to know whether another page exists.
    next_offset = None
    if len(entries) > limit:
        entries = entries[:limit]
        next_offset = offset + limit

    return UsageAuditPage(items=[_to_response(entry) for entry in entries], next_offset=next_offset)
