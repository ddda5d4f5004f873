"""Maintenance entrypoint.

Example:
    python -m loyalty_ledger purge-codes --now 2026-04-01T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import sys
from typing import Any, Sequence

from loguru import logger

from loyalty_ledger.core.logging import configure_logging
from loyalty_ledger.db.session import dispose_engine, init_engine
from loyalty_ledger.jobs.redemption_codes import purge_expired_redemption_codes


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="loyalty_ledger", description="Loyalty ledger maintenance")
    commands = parser.add_subparsers(dest="command", required=True)

    purge = commands.add_parser("purge-codes", help="Delete redemption codes past their expiry.")
    purge.add_argument(
        "--database-url",
        default=None,
        help="Override the configured database URL for this run.",
    )
    purge.add_argument(
        "--now",
        type=dt.datetime.fromisoformat,
        default=None,
        help="Reference time (ISO 8601); defaults to the current UTC time.",
    )
    return parser.parse_args(argv)


async def _purge_codes(database_url: str | None, now: dt.datetime | None) -> dict[str, Any]:
    session_factory = init_engine(database_url)
    try:
        return await purge_expired_redemption_codes(session_factory=session_factory, now=now)
    finally:
        await dispose_engine()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    summary = asyncio.run(_purge_codes(args.database_url, args.now))
    logger.success("Maintenance command completed", command=args.command, purged=summary["purged"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
