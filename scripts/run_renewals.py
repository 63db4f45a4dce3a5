#!/usr/bin/env python3
"""Run the renewal escalation engine once, outside the background scheduler.

All orgs, queue emails, then send them:
    python scripts/run_renewals.py --drain

One org, alerts only (no email planning):
    python scripts/run_renewals.py --org-id 12 --no-email
"""

import argparse
import asyncio
import json
import sys

from coverwatch.database import SessionLocal
from coverwatch.http_client import close_clients
from coverwatch.logging_config import setup_logging
from coverwatch.services.email_queue import process_renewal_email_queue
from coverwatch.services.renewal_email_planner import AutoEmailPlanner
from coverwatch.services.renewal_service import run_renewals_for_all_orgs, run_renewals_for_org


def _summary(result: dict) -> dict:
    return {
        "org_id": result["org_id"],
        "count": result["count"],
        "triggered": result["triggered"],
        "failed": result["failed"],
        "details": [d.model_dump(mode="json") for d in result["details"]],
    }


async def run(org_id: int | None, email: bool, drain: bool) -> dict:
    planner = AutoEmailPlanner() if email else None
    db = SessionLocal()
    try:
        if org_id is not None:
            results = [await run_renewals_for_org(db, org_id, planner)]
        else:
            results = await run_renewals_for_all_orgs(db, planner)

        report = {"orgs": [_summary(r) for r in results], "emails": []}
        if drain:
            report["emails"] = await process_renewal_email_queue(db)
        return report
    finally:
        db.close()
        await close_clients()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run renewal escalation once")
    parser.add_argument("--org-id", type=int, help="Only run this org")
    parser.add_argument("--no-email", action="store_true", help="Create alerts only, skip email planning")
    parser.add_argument("--drain", action="store_true", help="Send pending renewal emails after the run")
    args = parser.parse_args(argv)

    setup_logging()
    report = asyncio.run(run(args.org_id, not args.no_email, args.drain))
    print(json.dumps(report, indent=2))
    return 1 if any(o["failed"] for o in report["orgs"]) else 0


if __name__ == "__main__":
    sys.exit(main())
