from __future__ import annotations

import argparse
import asyncio
import sys

from seatledger.domain.plans import PLAN_ORDER
from seatledger.persistence.db import SessionLocal
from seatledger.persistence.repos import ledger as ledger_repo
from seatledger.services.plans import change_plan, create_organization


async def _assign(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        org = await ledger_repo.get_organization(session, args.organization_id)
        if org is None:
            if not args.create:
                raise ValueError(f"Organization {args.organization_id} not found; pass --create to add it")
            org = await create_organization(session, name=args.org_name or args.organization_id, organization_id=args.organization_id)
        entry = await change_plan(
            session,
            org.id,
            plan_type=args.plan,
            planned_managers=args.managers,
            planned_workers=args.workers,
        )
    print(f"organization_id={org.id}")
    print(f"ledger_entry_id={entry.id}")
    print(f"plan_type={entry.plan_type}")
    print(f"planned_managers={entry.planned_managers}")
    print(f"planned_workers={entry.planned_workers}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Assign or change an organization's subscription plan")
    parser.add_argument("--organization-id", required=True)
    parser.add_argument("--plan", required=True, help=f"One of {', '.join(PLAN_ORDER)} or a custom name")
    parser.add_argument("--managers", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--create", action="store_true", help="Create the organization when missing")
    parser.add_argument("--org-name", default=None)
    args = parser.parse_args()
    try:
        return asyncio.run(_assign(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"assign_plan failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
