from __future__ import annotations

import argparse
import asyncio
import sys

from servicebroker.core.errors import MigrationError
from servicebroker.core.logging import configure_logging
from servicebroker.persistence.db import build_engine
from servicebroker.persistence.migrations import MIGRATIONS, last_applied_migration, run_migrations


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bring the broker database schema up to date")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL for this run")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the last applied migration and exit without changing the schema",
    )
    return parser


async def _migrate(args: argparse.Namespace) -> int:
    engine = build_engine(args.database_url)
    try:
        if args.status:
            last_applied = await last_applied_migration(engine)
            print(f"last_applied={last_applied} latest={len(MIGRATIONS) - 1}")
            return 0
        applied = await run_migrations(engine)
        print(f"applied_migrations={applied}")
        return 0
    finally:
        await engine.dispose()


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_migrate(args))
    except MigrationError as exc:
        # Not retryable; the operator has to pick a different broker release.
        print(f"migrate_db refused: {exc}", file=sys.stderr)
        return 2
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"migrate_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
