from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seatledger.core.errors import AuditWriteFailure
from seatledger.domain.capacity import LedgerCorrection, overshoot
from seatledger.domain.models import SubscriptionAuditEntry


logger = logging.getLogger(__name__)

TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL_API = "manual_api"

ACTION_RECONCILE_MANAGERS = "reconcile_managers"
ACTION_RECONCILE_WORKERS = "reconcile_workers"

_ACTIONS_BY_ENTITY = {
    "manager": ACTION_RECONCILE_MANAGERS,
    "worker": ACTION_RECONCILE_WORKERS,
}

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"

AuditPayload = dict[str, Any]
AuditWriter = Callable[[AsyncSession, list[AuditPayload]], Awaitable[None]]


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def build_correction_payloads(
    correction: LedgerCorrection,
    *,
    trigger_source: str,
    actor: str | None = None,
    reason: str | None = None,
    planned_managers: int | None = None,
    planned_workers: int | None = None,
    sentinel: int,
) -> list[AuditPayload]:
    """Describe one audit row per drifted field of ``correction``.

    Every row carries both field pairs so a single entry is enough to see the
    whole correction. Manual triggers add the actor and the supplied reason.
    ``overshoot`` appears only when the true count sits above the ceiling,
    which is how racing admissions surface for operator follow-up.
    """
    planned = {"manager": planned_managers, "worker": planned_workers}
    payloads: list[AuditPayload] = []
    for entity_type, before, after in correction.changed_fields():
        metadata: dict[str, Any] = {
            "org_name": correction.org_name,
            "entity_type": entity_type,
            "old_managers": correction.old_managers,
            "new_managers": correction.new_managers,
            "old_workers": correction.old_workers,
            "new_workers": correction.new_workers,
        }
        if trigger_source == TRIGGER_MANUAL_API:
            metadata["triggered_by"] = actor
            metadata["reason"] = reason
        excess = overshoot(after, planned[entity_type], sentinel)
        if excess > 0:
            metadata["overshoot"] = excess
        payloads.append(
            {
                "organization_id": correction.org_id,
                "action": _ACTIONS_BY_ENTITY[entity_type],
                "before_count": before,
                "after_count": after,
                "trigger_source": trigger_source,
                "metadata": metadata,
            }
        )
    return payloads


def _to_entry(payload: AuditPayload) -> SubscriptionAuditEntry:
    return SubscriptionAuditEntry(
        organization_id=payload["organization_id"],
        action=payload["action"],
        before_count=payload["before_count"],
        after_count=payload["after_count"],
        trigger_source=payload["trigger_source"],
        metadata_json=sanitize_metadata(payload.get("metadata") or {}),
    )


async def write_audit_entries(session: AsyncSession, payloads: list[AuditPayload]) -> None:
    # Insert without committing; the caller owns the transaction boundary.
    session.add_all([_to_entry(payload) for payload in payloads])
    await session.flush()


async def write_with_retry(
    payloads: list[AuditPayload],
    *,
    session_factory: async_sessionmaker[AsyncSession],
    writer: AuditWriter = write_audit_entries,
    max_attempts: int,
    backoff_ms: int,
) -> int:
    """Write audit rows in their own transactions until one commits.

    Returns the attempt number that succeeded. Raises ``AuditWriteFailure``
    once ``max_attempts`` commits have failed. A row may land twice when a
    commit succeeds but its acknowledgement is lost; duplicates are tolerated,
    gaps are not.
    """
    if not payloads:
        return 0
    attempts = max(1, int(max_attempts))
    organization_id = payloads[0]["organization_id"]
    action = ",".join(payload["action"] for payload in payloads)
    for attempt in range(1, attempts + 1):
        async with session_factory() as session:
            try:
                async with session.begin():
                    await writer(session, payloads)
                return attempt
            except SQLAlchemyError as exc:
                logger.warning(
                    "audit_write_retry_failed org_id=%s action=%s attempt=%s",
                    organization_id,
                    action,
                    attempt,
                    exc_info=exc,
                )
        if attempt < attempts and backoff_ms > 0:
            # Linear backoff keeps retries short inside a reconciliation pass.
            await asyncio.sleep(backoff_ms * attempt / 1000.0)
    raise AuditWriteFailure(organization_id, action, attempts)
