from __future__ import annotations

import logging
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from seatledger.core.config import get_settings
from seatledger.core.logging import configure_logging
from seatledger.services.reconciliation import ReconciliationTrigger, reconcile_usage

logger = logging.getLogger(__name__)


async def run_scheduled_reconciliation(ctx) -> dict[str, Any]:
    # Hourly pass over every organization; failed organizations wait for the next tick.
    result = await reconcile_usage(ReconciliationTrigger.scheduled())
    if result.failures:
        logger.warning("scheduled_reconcile_partial failures=%s", len(result.failures))
    return result.summary()


async def reconcile_on_demand(
    ctx,
    organization_id: str | None = None,
    actor: str | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    # Enqueued by operators; recorded as a manual trigger with the given actor and reason.
    result = await reconcile_usage(ReconciliationTrigger.manual(actor=actor, reason=reason), organization_id)
    return result.summary()


async def _startup(ctx) -> None:
    configure_logging()


def _cron_jobs() -> list:
    settings = get_settings()
    if not settings.reconcile_schedule_enabled:
        return []
    # Skip overlapping runs; a slow pass simply delays the next one.
    return [
        cron(
            run_scheduled_reconciliation,
            minute={int(settings.reconcile_cron_minute) % 60},
            unique=True,
            run_at_startup=False,
        )
    ]


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.reconcile_queue_name
    functions = [reconcile_on_demand]
    cron_jobs = _cron_jobs()
    on_startup = _startup
