#!/usr/bin/env python3
"""
Delete payment simulations older than the configured TTL.

Simulations are scratch computations; anything older than
``simulations.ttl_hours`` is no longer trusted by the balance screen.
Meant to run from cron once an hour.

Usage:
    python3 scripts/purge_simulations.py                      # packaged defaults
    python3 scripts/purge_simulations.py --config ledger.yaml
    python3 scripts/purge_simulations.py --hours 6            # override the TTL
    python3 scripts/purge_simulations.py --database-url sqlite:///ledger.db
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from ledger_config import get_active_config
from ledger_config.bridges import build_policy, init_from_settings
from station_ledger.db.engine import session_scope
from station_ledger.services.ledger_orchestrator import LedgerOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Purge stale payment simulations")
    parser.add_argument("--config", type=Path, help="YAML config file (default: packaged defaults)")
    parser.add_argument("--database-url", help="Override database.url")
    parser.add_argument("--hours", type=int, help="Override simulations.ttl_hours")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before purging",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if args.database_url:
        settings = replace(settings, database=replace(settings.database, url=args.database_url))
    if args.hours is not None:
        if args.hours < 1:
            print("ERROR: --hours must be at least 1", file=sys.stderr)
            return 1
        settings = replace(settings, simulations=replace(settings.simulations, ttl_hours=args.hours))

    init_from_settings(settings, create_schema=args.create_schema)

    with session_scope() as session:
        ledger = LedgerOrchestrator(session, build_policy(settings), auto_commit=False)
        deleted = ledger.purge_stale_simulations()

    print(f"Purged {deleted} simulation(s) older than {settings.simulations.ttl_hours}h")
    return 0


if __name__ == "__main__":
    sys.exit(main())
