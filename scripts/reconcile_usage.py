from __future__ import annotations

import argparse
import asyncio

from seatledger.core.logging import configure_logging
from seatledger.services.reconciliation import ReconciliationTrigger, reconcile_usage


async def _run(organization_id: str | None, actor: str | None, reason: str | None, scheduled: bool) -> int:
    # Run one reconciliation pass from the CLI and print a key=value summary.
    trigger = (
        ReconciliationTrigger.scheduled()
        if scheduled
        else ReconciliationTrigger.manual(actor=actor, reason=reason)
    )
    result = await reconcile_usage(trigger, organization_id)
    for item in result.reconciled:
        print(
            f"reconciled org_id={item.org_id} managers={item.old_managers}->{item.new_managers} "
            f"workers={item.old_workers}->{item.new_workers}"
        )
    for failure in result.failures:
        print(f"failed org_id={failure.org_id} error={failure.error}")
    for audit_failure in result.audit_failures:
        print(f"audit_failed org_id={audit_failure.organization_id} action={audit_failure.action}")
    print(f"reconciled_count={len(result.reconciled)}")
    print(f"failure_count={len(result.failures)}")
    print(f"skipped_count={len(result.skipped)}")
    return 1 if result.failures else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile usage ledger counts against active accounts")
    parser.add_argument("--organization-id", default=None)
    parser.add_argument("--actor", default="cli")
    parser.add_argument("--reason", default=None)
    parser.add_argument("--scheduled", action="store_true", help="Record the pass as a scheduled run")
    args = parser.parse_args()
    configure_logging()
    raise SystemExit(asyncio.run(_run(args.organization_id, args.actor, args.reason, args.scheduled)))


if __name__ == "__main__":
    main()
