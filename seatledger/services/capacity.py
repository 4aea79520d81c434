from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from seatledger.core.config import get_settings
from seatledger.core.errors import CapacityExceededError, NoActivePlanError
from seatledger.domain.capacity import (
    ENTITY_MANAGER,
    ENTITY_TYPES,
    CapacityFigures,
    EntityType,
    build_figures,
)
from seatledger.domain.plans import plan_display_name
from seatledger.persistence.repos import ledger as ledger_repo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityReport:
    # Single capacity contract for both entity types, read from the current ledger row.
    organization_id: str
    plan_name: str
    ledger_entry_id: str
    managers: CapacityFigures
    workers: CapacityFigures

    def figures_for(self, entity_type: EntityType) -> CapacityFigures:
        return self.managers if entity_type == ENTITY_MANAGER else self.workers

    def to_payload(self) -> dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "plan_name": self.plan_name,
            "planned_managers": self.managers.planned,
            "planned_workers": self.workers.planned,
            "active_managers": self.managers.active,
            "active_workers": self.workers.active,
            "max_managers": self.managers.max,
            "max_workers": self.workers.max,
            "can_add_manager": self.managers.can_add,
            "can_add_worker": self.workers.can_add,
        }


class CapacityService:
    def __init__(
        self,
        *,
        time_provider: Callable[[], datetime] | None = None,
        unlimited_sentinel: int | None = None,
    ) -> None:
        # Allow time injection for deterministic effective-range tests.
        self._time_provider = time_provider or _utc_now
        self._sentinel = unlimited_sentinel

    @property
    def sentinel(self) -> int:
        if self._sentinel is not None:
            return self._sentinel
        return get_settings().capacity_unlimited_sentinel

    async def get_capacity(self, session: AsyncSession, organization_id: str) -> CapacityReport:
        # Read-only: resolve the effective ledger row and derive both admission decisions.
        now = self._time_provider()
        entry = await ledger_repo.get_current_entry(session, organization_id, now=now)
        if entry is None:
            raise NoActivePlanError(organization_id)
        return CapacityReport(
            organization_id=organization_id,
            plan_name=plan_display_name(entry.plan_type),
            ledger_entry_id=entry.id,
            managers=build_figures(entry.planned_managers, entry.active_managers, self.sentinel),
            workers=build_figures(entry.planned_workers, entry.active_workers, self.sentinel),
        )

    async def admit(
        self,
        session: AsyncSession,
        organization_id: str,
        entity_type: EntityType,
    ) -> CapacityReport:
        """Permit or deny one creation of ``entity_type`` for the organization.

        Check-then-act against the cached ledger counts: concurrent callers can
        all pass while the ceiling has one seat left. Reconciliation records the
        resulting overshoot; nothing here holds a lock.
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"unknown entity type: {entity_type}")
        report = await self.get_capacity(session, organization_id)
        figures = report.figures_for(entity_type)
        if not figures.can_add:
            logger.info(
                "admission_denied org_id=%s entity_type=%s active=%s max=%s",
                organization_id,
                entity_type,
                figures.active,
                figures.max,
            )
            raise CapacityExceededError(
                organization_id=organization_id,
                entity_type=entity_type,
                planned=figures.planned,
                active=figures.active,
                max=figures.max,
                plan_name=report.plan_name,
            )
        return report


_capacity_service: CapacityService | None = None


def get_capacity_service() -> CapacityService:
    # Cache the capacity service for reuse across requests.
    global _capacity_service
    if _capacity_service is None:
        _capacity_service = CapacityService()
    return _capacity_service


def reset_capacity_service() -> None:
    # Reset cached services for deterministic tests.
    global _capacity_service
    _capacity_service = None


async def get_capacity(session: AsyncSession, organization_id: str) -> CapacityReport:
    return await get_capacity_service().get_capacity(session, organization_id)


async def admit(session: AsyncSession, organization_id: str, entity_type: EntityType) -> CapacityReport:
    return await get_capacity_service().admit(session, organization_id, entity_type)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
