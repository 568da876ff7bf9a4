"""Seed hostel admins and maintenance workers for local testing.

Usage:
    python fastapi-backend/scripts/seed_staff.py admin --username hb1admin --password secret --hostel HB1
    python fastapi-backend/scripts/seed_staff.py worker --name Raju --phone 9876543210 --hostel HB1 --work-type Electrical
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure the backend directory is importable when run from the repo root
ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT / "fastapi-backend"))

from grievance.database import get_session, init_db
from grievance import auth
from grievance.assignment import register_worker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed hostel staff")
    sub = parser.add_subparsers(dest="kind", required=True)

    admin = sub.add_parser("admin", help="create or update a hostel admin")
    admin.add_argument("--username", required=True)
    admin.add_argument("--password", required=True)
    admin.add_argument("--hostel", required=True)

    worker = sub.add_parser("worker", help="create or update a maintenance worker")
    worker.add_argument("--name", required=True)
    worker.add_argument("--phone", required=True)
    worker.add_argument("--hostel", required=True)
    worker.add_argument("--work-type", required=True)
    return parser


async def main(argv=None):
    args = build_parser().parse_args(argv)

    print("Initializing DB...")
    await init_db()

    async for session in get_session():
        if args.kind == "admin":
            admin = await auth.create_hostel_admin(session, args.username, args.password, args.hostel)
            print(f"Created/Updated admin id={admin.id} username={admin.username} hostel={admin.hostel}")
        else:
            worker = await register_worker(session, args.name, args.phone, args.hostel, args.work_type)
            print(
                f"Created/Updated worker id={worker.id} name={worker.name} "
                f"phone={worker.phone} hostel={worker.hostel} work_type={worker.work_type}"
            )
        break  # Use one session then exit


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
