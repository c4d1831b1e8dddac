"""
Bootstrap a SUPER_ADMIN and print an access token for it.

Usage:
    python scripts/create_admin.py --first-name Asha --last-name Rao \
        --email admin@example.com --phone 9876543210
"""

import argparse
import asyncio
import logging

from loan_channel.core.exceptions import ConflictError
from loan_channel.core.security import create_access_token
from loan_channel.database.connection import init_db
from loan_channel.services.directory_service import directory_service

logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Create the first admin account")
    parser.add_argument("--first-name", required=True)
    parser.add_argument("--last-name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--phone", required=True, help="10-digit phone number")
    parser.add_argument("--region", default=None)
    return parser.parse_args()


async def main():
    args = parse_args()
    await init_db()
    try:
        admin = await directory_service.create_admin({
            "first_name": args.first_name,
            "last_name": args.last_name,
            "email": args.email,
            "phone": args.phone,
            "region": args.region,
        })
    except ConflictError as e:
        logger.error(f"Admin not created: {e.message}")
        raise SystemExit(1)

    token = create_access_token({"sub": str(admin.id), "role": admin.role.value})
    print(f"Admin {admin.employee_id} created with ID: {admin.id}")
    print(f"Access token: {token}")


if __name__ == "__main__":
    asyncio.run(main())
