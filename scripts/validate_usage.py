from __future__ import annotations

import argparse
import asyncio

from seatledger.persistence.db import SessionLocal
from seatledger.services.reconciliation import validate_usage


async def _run(organization_id: str | None) -> int:
    # Read-only scan; exit status 1 when any drift remains.
    async with SessionLocal() as session:
        discrepancies = await validate_usage(session, organization_id)
    for item in discrepancies:
        print(
            f"discrepancy org_id={item.org_id} managers={item.stored_managers}/{item.true_managers} "
            f"workers={item.stored_workers}/{item.true_workers}"
        )
    print(f"discrepancy_count={len(discrepancies)}")
    return 1 if discrepancies else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Report usage ledger drift without correcting it")
    parser.add_argument("--organization-id", default=None)
    args = parser.parse_args()
    raise SystemExit(asyncio.run(_run(args.organization_id)))


if __name__ == "__main__":
    main()
