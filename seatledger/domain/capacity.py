"""Pure capacity and reconciliation rules.

Nothing here touches a session: the store-facing services load rows, build the
snapshots below, and apply whatever these functions decide.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from seatledger.core.config import UNLIMITED_SENTINEL


EntityType = Literal["manager", "worker"]
ENTITY_MANAGER: EntityType = "manager"
ENTITY_WORKER: EntityType = "worker"
ENTITY_TYPES: tuple[EntityType, ...] = (ENTITY_MANAGER, ENTITY_WORKER)


class LedgerStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    EXPIRED = "expired"


class ReconcileState(str, Enum):
    # stale -> reconciled on a pass, reconciled -> stale on the next ground truth mutation.
    STALE = "stale"
    RECONCILED = "reconciled"


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ledger_status(start: datetime, end: datetime | None, now: datetime) -> LedgerStatus:
    # Half-open range [start, end); an open end means the row never lapses on its own.
    now = as_utc(now)
    if now < as_utc(start):
        return LedgerStatus.UPCOMING
    if end is not None and as_utc(end) <= now:
        return LedgerStatus.EXPIRED
    return LedgerStatus.ACTIVE


def normalize_limit(value: int | None, sentinel: int = UNLIMITED_SENTINEL) -> int | None:
    """Map the stored ceiling to ``None`` when it means "no limit"."""
    if value is None or value >= sentinel:
        return None
    return max(int(value), 0)


@dataclass(frozen=True)
class CapacityFigures:
    planned: int | None
    active: int
    max: int | None
    can_add: bool

    @property
    def unlimited(self) -> bool:
        return self.max is None

    @property
    def remaining(self) -> int | None:
        if self.max is None:
            return None
        return max(self.max - self.active, 0)


def build_figures(planned: int | None, active: int | None, sentinel: int = UNLIMITED_SENTINEL) -> CapacityFigures:
    # can_add = unlimited(max) OR active < max
    ceiling = normalize_limit(planned, sentinel)
    used = int(active or 0)
    return CapacityFigures(
        planned=ceiling,
        active=used,
        max=ceiling,
        can_add=ceiling is None or used < ceiling,
    )


@dataclass(frozen=True)
class GroundTruthSnapshot:
    org_id: str
    org_name: str
    stored_managers: int
    stored_workers: int
    true_managers: int
    true_workers: int

    @property
    def state(self) -> ReconcileState:
        if self.stored_managers == self.true_managers and self.stored_workers == self.true_workers:
            return ReconcileState.RECONCILED
        return ReconcileState.STALE


@dataclass(frozen=True)
class LedgerCorrection:
    org_id: str
    org_name: str
    old_managers: int
    new_managers: int
    old_workers: int
    new_workers: int

    @property
    def managers_changed(self) -> bool:
        return self.old_managers != self.new_managers

    @property
    def workers_changed(self) -> bool:
        return self.old_workers != self.new_workers

    def changed_fields(self) -> list[tuple[EntityType, int, int]]:
        # One (entity_type, before, after) tuple per field that drifted.
        fields: list[tuple[EntityType, int, int]] = []
        if self.managers_changed:
            fields.append((ENTITY_MANAGER, self.old_managers, self.new_managers))
        if self.workers_changed:
            fields.append((ENTITY_WORKER, self.old_workers, self.new_workers))
        return fields

    def as_summary(self) -> dict[str, object]:
        return {
            "org_id": self.org_id,
            "org_name": self.org_name,
            "old_managers": self.old_managers,
            "new_managers": self.new_managers,
            "old_workers": self.old_workers,
            "new_workers": self.new_workers,
        }


def compute_correction(snapshot: GroundTruthSnapshot) -> LedgerCorrection | None:
    """Return the correction that closes the drift, or ``None`` when already reconciled."""
    if snapshot.state is ReconcileState.RECONCILED:
        return None
    return LedgerCorrection(
        org_id=snapshot.org_id,
        org_name=snapshot.org_name,
        old_managers=snapshot.stored_managers,
        new_managers=snapshot.true_managers,
        old_workers=snapshot.stored_workers,
        new_workers=snapshot.true_workers,
    )


def apply_correction(entry: object, correction: LedgerCorrection) -> bool:
    """Write corrected counts onto a ledger row; a second apply is a no-op."""
    changed = False
    if getattr(entry, "active_managers") != correction.new_managers:
        setattr(entry, "active_managers", correction.new_managers)
        changed = True
    if getattr(entry, "active_workers") != correction.new_workers:
        setattr(entry, "active_workers", correction.new_workers)
        changed = True
    return changed


def overshoot(true_count: int, planned: int | None, sentinel: int = UNLIMITED_SENTINEL) -> int:
    # Accounts created past the ceiling by racing admissions; reconciliation can only report them.
    ceiling = normalize_limit(planned, sentinel)
    if ceiling is None:
        return 0
    return max(true_count - ceiling, 0)
