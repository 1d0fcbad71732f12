from __future__ import annotations

import argparse
import asyncio
import sys

from servicebroker.persistence.db import dispose_engine, get_session
from servicebroker.persistence.repos.bindings import list_bindings_for_instance
from servicebroker.persistence.repos.instances import list_instances


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List service instances tracked by the broker")
    parser.add_argument(
        "--include-deleted",
        action="store_true",
        help="Also show soft-deleted instances and bindings (audit view)",
    )
    parser.add_argument("--bindings", action="store_true", help="Print bindings under each instance")
    return parser


def _fmt(value) -> str:
    if value is None:
        return ""
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


async def _list(args: argparse.Namespace) -> int:
    try:
        async with get_session() as session:
            instances = await list_instances(session, include_deleted=args.include_deleted)
            print("instance_id\tservice_id\tplan_id\tstatus\tname\tcreated_at\tdeleted_at")
            for instance in instances:
                print(
                    f"{instance.id}\t{instance.service_id}\t{instance.plan_id}\t{instance.status}\t"
                    f"{instance.name or ''}\t{_fmt(instance.created_at)}\t{_fmt(instance.deleted_at)}"
                )
                if not args.bindings:
                    continue
                bindings = await list_bindings_for_instance(
                    session, instance.id, include_deleted=args.include_deleted
                )
                for binding in bindings:
                    print(f"  binding\t{binding.binding_id}\t{_fmt(binding.created_at)}\t{_fmt(binding.deleted_at)}")
    finally:
        await dispose_engine()
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_list(args))
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"list_instances failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
