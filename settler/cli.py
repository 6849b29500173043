"""CLI tool for operator tasks.

Usage:
    python -m settler.cli run-once
    python -m settler.cli reconcile [--apply]
"""

import asyncio
import json
import sys
from datetime import datetime, timezone

from settler.database import create_db_and_tables
from settler.utils.logging import setup_logging


def run_once():
    """Run a single settlement pass (for cron) and print its summary."""
    from settler.engine.settlement_job import run_settlement_pass

    summary = asyncio.run(run_settlement_pass())
    print(json.dumps(summary, indent=2, default=str))
    counts = summary.get("counts", {})
    if summary.get("error") or counts.get("error") or counts.get("partial"):
        sys.exit(2)


def reconcile(apply: bool):
    """Report, and with --apply credit, settlements missing their ledger credit."""
    from settler.config import settings
    from settler.engine.reconcile import reconcile_settlements, release_stale_claims

    released = release_stale_claims(datetime.now(timezone.utc), settings.claim_ttl_minutes)
    report = reconcile_settlements(apply=apply)
    report["released_stale_claims"] = released

    print(json.dumps(report, indent=2))
    if report["unreconciled"] and not apply:
        print("\nRe-run with --apply to credit the missing settlements.")
    if report["errors"]:
        sys.exit(2)


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m settler.cli <command>")
        print("Commands: run-once, reconcile [--apply]")
        sys.exit(1)

    setup_logging()
    create_db_and_tables()

    command = sys.argv[1]
    if command == "run-once":
        run_once()
    elif command == "reconcile":
        reconcile(apply="--apply" in sys.argv[2:])
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
