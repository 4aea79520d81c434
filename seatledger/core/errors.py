from __future__ import annotations

from typing import Any


class SeatLedgerError(Exception):
    """Base error for SeatLedger."""


class DatabaseError(SeatLedgerError):
    """Database layer failure."""


class NoActivePlanError(SeatLedgerError):
    """Organization has no currently-effective usage ledger entry."""

    message = "No subscription plan found for this organization"

    def __init__(self, organization_id: str) -> None:
        super().__init__(self.message)
        self.organization_id = organization_id


class CapacityExceededError(SeatLedgerError):
    """Admission denied because the plan ceiling is reached."""

    def __init__(
        self,
        *,
        organization_id: str,
        entity_type: str,
        planned: int | None,
        active: int,
        max: int | None,
        plan_name: str,
    ) -> None:
        super().__init__(f"{entity_type.capitalize()} limit reached ({active}/{max})")
        self.organization_id = organization_id
        self.entity_type = entity_type
        self.planned = planned
        self.active = active
        self.max = max
        self.plan_name = plan_name

    def to_detail(self) -> dict[str, Any]:
        # Carry current vs max figures so callers can explain the denial.
        return {
            "organization_id": self.organization_id,
            "entity_type": self.entity_type,
            "planned": self.planned,
            "active": self.active,
            "max": self.max,
            "plan_name": self.plan_name,
        }


class UnauthorizedError(SeatLedgerError):
    """Missing or unresolvable credential."""


class ForbiddenError(SeatLedgerError):
    """Authenticated identity lacks the required privilege."""


class PlanChangeError(SeatLedgerError):
    """Plan change request could not be applied."""


class AuditWriteFailure(SeatLedgerError):
    """Ledger correction landed but its audit entry could not be written."""

    def __init__(self, organization_id: str, action: str, attempts: int) -> None:
        super().__init__(
            f"audit write failed for organization {organization_id} action={action} after {attempts} attempts"
        )
        self.organization_id = organization_id
        self.action = action
        self.attempts = attempts


class ReconciliationPartialFailure(SeatLedgerError):
    """One or more organizations failed during a reconciliation pass."""

    def __init__(self, failures: list[Any]) -> None:
        super().__init__(f"{len(failures)} organization(s) failed reconciliation")
        self.failures = failures
