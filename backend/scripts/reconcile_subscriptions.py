#!/usr/bin/env python3
"""Expire lapsed subscriptions and repair missing ones from the purchase ledger.

Usage:
    python scripts/reconcile_subscriptions.py            # expire + repair
    python scripts/reconcile_subscriptions.py --expire-only
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add backend root to path
backend_root = Path(__file__).parent.parent
sys.path.insert(0, str(backend_root))

from infrastructure.config import get_settings  # noqa: E402
from infrastructure.database import async_session_maker, close_db  # noqa: E402
from infrastructure.logging_config import setup_logging  # noqa: E402
from services.subscription_jobs import SubscriptionReconciliationJob  # noqa: E402

logger = logging.getLogger("reconcile_subscriptions")


async def main(repair: bool) -> dict:
    settings = get_settings()
    job = SubscriptionReconciliationJob(
        async_session_maker,
        default_plan_slug=settings.default_plan_slug,
    )
    try:
        return await job.run(repair=repair)
    finally:
        await close_db()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--expire-only",
        action="store_true",
        help="Only run the expiry sweep, skip the purchase repair",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    setup_logging(json_output=args.json_logs, level="INFO")

    results = asyncio.run(main(repair=not args.expire_only))
    print(json.dumps(results, indent=2))
    sys.exit(1 if results.get("errors") else 0)
