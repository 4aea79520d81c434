from __future__ import annotations

import argparse
import asyncio
import sys

from seatledger.domain.models import User
from seatledger.persistence.db import SessionLocal
from seatledger.services.auth.api_keys import create_user, issue_api_key
from seatledger.services.auth.super_admins import enroll_super_admin


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create an API key for a user")
    parser.add_argument("--email", required=True, help="User e-mail; matched against the super admin registry")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    parser.add_argument("--user-id", default=None, help="Existing user id to attach")
    parser.add_argument("--super-admin", action="store_true", help="Also enroll the e-mail as a super admin")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        user = await session.get(User, args.user_id) if args.user_id else None
        if user is None:
            user = await create_user(session, email=args.email, user_id=args.user_id)
        elif user.email != args.email.strip().lower():
            raise ValueError("User e-mail does not match --email")
        api_key, raw_key = await issue_api_key(session, user_id=user.id, name=args.name)
        if args.super_admin:
            await enroll_super_admin(session, email=args.email)
        await session.commit()

    print("API key created:")
    print(f"  key_id: {api_key.id}")
    print(f"  key_prefix: {api_key.key_prefix}")
    print(f"  super_admin: {'yes' if args.super_admin else 'no'}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
