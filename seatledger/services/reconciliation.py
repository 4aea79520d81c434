"""Usage ledger reconciliation and validation.

Each organization is its own unit of work: one session, one transaction, the
ledger row locked while Ground Truth is counted and the correction applied.
Units run under a bounded semaphore and never share state, so a failure or a
cancellation only affects the units that have not committed yet.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seatledger.core.config import get_settings
from seatledger.core.errors import AuditWriteFailure, DatabaseError, ReconciliationPartialFailure
from seatledger.domain.capacity import (
    GroundTruthSnapshot,
    LedgerCorrection,
    apply_correction,
    compute_correction,
)
from seatledger.domain.models import Organization, UsageLedgerEntry
from seatledger.persistence.db import SessionLocal
from seatledger.persistence.repos import accounts as accounts_repo
from seatledger.persistence.repos import ledger as ledger_repo
from seatledger.services.audit import (
    TRIGGER_MANUAL_API,
    TRIGGER_SCHEDULED,
    AuditWriter,
    build_correction_payloads,
    write_audit_entries,
    write_with_retry,
)


logger = logging.getLogger(__name__)

DEFAULT_MANUAL_REASON = "manual_reconciliation"

ReconciledOrganization = LedgerCorrection
Discrepancy = GroundTruthSnapshot


@dataclass(frozen=True)
class ReconciliationTrigger:
    source: str
    actor: str | None = None
    reason: str | None = None

    @classmethod
    def scheduled(cls) -> "ReconciliationTrigger":
        return cls(source=TRIGGER_SCHEDULED)

    @classmethod
    def manual(cls, actor: str | None, reason: str | None = None) -> "ReconciliationTrigger":
        return cls(source=TRIGGER_MANUAL_API, actor=actor, reason=reason or DEFAULT_MANUAL_REASON)


@dataclass(frozen=True)
class OrganizationFailure:
    org_id: str
    error: str


@dataclass
class ReconciliationResult:
    reconciled: list[ReconciledOrganization] = field(default_factory=list)
    failures: list[OrganizationFailure] = field(default_factory=list)
    audit_failures: list[AuditWriteFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise ReconciliationPartialFailure(list(self.failures))

    def summary(self) -> dict[str, Any]:
        return {
            "reconciled": [item.as_summary() for item in self.reconciled],
            "failures": [{"org_id": item.org_id, "error": item.error} for item in self.failures],
            "audit_failures": [
                {"org_id": item.organization_id, "action": item.action, "attempts": item.attempts}
                for item in self.audit_failures
            ],
            "skipped": list(self.skipped),
        }


@dataclass(frozen=True)
class _UnitOutcome:
    correction: LedgerCorrection | None = None
    audit_failure: AuditWriteFailure | None = None
    skipped: bool = False


class ReconciliationService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        time_provider: Callable[[], datetime] | None = None,
        audit_writer: AuditWriter | None = None,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._time_provider = time_provider or _utc_now
        # Swappable for tests that simulate audit store outages.
        self._audit_writer = audit_writer or write_audit_entries

    async def reconcile_usage(
        self,
        trigger: ReconciliationTrigger,
        organization_id: str | None = None,
    ) -> ReconciliationResult:
        settings = get_settings()
        organizations = await self._enumerate(organization_id)
        result = ReconciliationResult()
        semaphore = asyncio.Semaphore(max(1, int(settings.reconcile_max_concurrency)))

        async def _guarded(org_id: str, org_name: str) -> None:
            async with semaphore:
                try:
                    outcome = await self._reconcile_organization(org_id, org_name, trigger)
                except Exception as exc:  # noqa: BLE001 - isolated per organization, retried next pass
                    logger.warning("reconcile_org_failed org_id=%s", org_id, exc_info=exc)
                    result.failures.append(OrganizationFailure(org_id=org_id, error=str(exc)))
                    return
            if outcome.skipped:
                result.skipped.append(org_id)
                return
            if outcome.correction is not None:
                result.reconciled.append(outcome.correction)
            if outcome.audit_failure is not None:
                result.audit_failures.append(outcome.audit_failure)

        await asyncio.gather(*(_guarded(org.id, org.name) for org in organizations))
        # Stable ordering for reports regardless of completion order.
        result.reconciled.sort(key=lambda item: item.org_id)
        result.failures.sort(key=lambda item: item.org_id)
        result.skipped.sort()
        logger.info(
            "reconcile_completed source=%s organizations=%s reconciled=%s failures=%s skipped=%s",
            trigger.source,
            len(organizations),
            len(result.reconciled),
            len(result.failures),
            len(result.skipped),
        )
        return result

    async def validate_usage(
        self,
        session: AsyncSession,
        organization_id: str | None = None,
    ) -> list[Discrepancy]:
        # Read-only mirror of the reconciliation pass; organizations without a current plan are ignored.
        now = self._time_provider()
        organizations = await ledger_repo.list_organizations(session, organization_id=organization_id)
        discrepancies: list[Discrepancy] = []
        for org in organizations:
            loaded = await _load_snapshot(session, org.id, org.name, now=now, for_update=False)
            if loaded is None:
                continue
            _, snapshot = loaded
            if compute_correction(snapshot) is not None:
                discrepancies.append(snapshot)
        return discrepancies

    async def _enumerate(self, organization_id: str | None) -> list[Organization]:
        # Enumeration failure aborts the whole pass.
        try:
            async with self._session_factory() as session:
                return await ledger_repo.list_organizations(session, organization_id=organization_id)
        except SQLAlchemyError as exc:
            logger.error("reconcile_enumeration_failed org_id=%s", organization_id, exc_info=exc)
            raise DatabaseError("Unable to enumerate organizations") from exc

    async def _reconcile_organization(
        self,
        org_id: str,
        org_name: str,
        trigger: ReconciliationTrigger,
    ) -> _UnitOutcome:
        settings = get_settings()
        now = self._time_provider()
        pending_audit: list[dict[str, Any]] = []
        async with self._session_factory() as session:
            async with session.begin():
                loaded = await _load_snapshot(session, org_id, org_name, now=now, for_update=True)
                if loaded is None:
                    logger.info("reconcile_org_skipped org_id=%s reason=no_active_plan", org_id)
                    return _UnitOutcome(skipped=True)
                entry, snapshot = loaded
                correction = compute_correction(snapshot)
                if correction is None:
                    return _UnitOutcome()
                apply_correction(entry, correction)
                payloads = build_correction_payloads(
                    correction,
                    trigger_source=trigger.source,
                    actor=trigger.actor,
                    reason=trigger.reason,
                    planned_managers=entry.planned_managers,
                    planned_workers=entry.planned_workers,
                    sentinel=settings.capacity_unlimited_sentinel,
                )
                try:
                    # Savepoint keeps the ledger correction alive if the audit insert fails.
                    async with session.begin_nested():
                        await self._audit_writer(session, payloads)
                except SQLAlchemyError as exc:
                    logger.warning("audit_write_deferred org_id=%s", org_id, exc_info=exc)
                    pending_audit = payloads

        logger.info(
            "reconcile_org_corrected org_id=%s managers=%s->%s workers=%s->%s source=%s",
            org_id,
            correction.old_managers,
            correction.new_managers,
            correction.old_workers,
            correction.new_workers,
            trigger.source,
        )
        if not pending_audit:
            return _UnitOutcome(correction=correction)
        try:
            await write_with_retry(
                pending_audit,
                session_factory=self._session_factory,
                writer=self._audit_writer,
                max_attempts=settings.audit_write_max_attempts,
                backoff_ms=settings.audit_write_backoff_ms,
            )
        except AuditWriteFailure as exc:
            # The ledger already holds the true counts; only traceability is lost.
            logger.error(
                "audit_write_failed org_id=%s action=%s attempts=%s",
                exc.organization_id,
                exc.action,
                exc.attempts,
            )
            return _UnitOutcome(correction=correction, audit_failure=exc)
        return _UnitOutcome(correction=correction)


async def _load_snapshot(
    session: AsyncSession,
    org_id: str,
    org_name: str,
    *,
    now: datetime,
    for_update: bool,
) -> tuple[UsageLedgerEntry, GroundTruthSnapshot] | None:
    # Counts are read after the row lock so the pair describes one instant for this organization.
    entry = await ledger_repo.get_current_entry(session, org_id, now=now, for_update=for_update)
    if entry is None:
        return None
    snapshot = GroundTruthSnapshot(
        org_id=org_id,
        org_name=org_name,
        stored_managers=int(entry.active_managers or 0),
        stored_workers=int(entry.active_workers or 0),
        true_managers=await accounts_repo.count_active_managers(session, org_id),
        true_workers=await accounts_repo.count_active_workers(session, org_id),
    )
    return entry, snapshot


_reconciliation_service: ReconciliationService | None = None


def get_reconciliation_service() -> ReconciliationService:
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = ReconciliationService()
    return _reconciliation_service


def reset_reconciliation_service() -> None:
    # Reset cached services for deterministic tests.
    global _reconciliation_service
    _reconciliation_service = None


async def reconcile_usage(
    trigger: ReconciliationTrigger,
    organization_id: str | None = None,
) -> ReconciliationResult:
    return await get_reconciliation_service().reconcile_usage(trigger, organization_id)


async def validate_usage(session: AsyncSession, organization_id: str | None = None) -> list[Discrepancy]:
    return await get_reconciliation_service().validate_usage(session, organization_id)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
