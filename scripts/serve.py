from __future__ import annotations

import argparse

import uvicorn

from servicebroker.core.config import get_settings
from servicebroker.core.logging import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the service broker HTTP API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    configure_logging()
    # Migrations run in the app lifespan before the first request is served.
    uvicorn.run(
        "servicebroker.apps.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
