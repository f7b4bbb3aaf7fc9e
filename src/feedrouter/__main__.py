"""Command-line entry point: ``python -m feedrouter``."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from aiohttp import web

from feedrouter.config import RouterConfig
from feedrouter.exceptions import RouterConfigError
from feedrouter.router import FeedRouter
from feedrouter.server import create_app


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="feedrouter",
        description="Poll a key/value CSV and push debounced changes to WebSocket subscribers.",
    )
    parser.add_argument("--source-url", help="CSV export URL (env: FEEDROUTER_SOURCE_URL)")
    parser.add_argument("--host", help="Bind address (env: FEEDROUTER_HOST)")
    parser.add_argument("--port", type=int, help="Listen port (env: PORT)")
    parser.add_argument("--poll-ms", type=int, dest="poll_interval_ms", help="Poll delay in ms (env: POLL_MS)")
    parser.add_argument(
        "--stable-reads",
        type=int,
        help="Consecutive identical reads required to commit (env: REQUIRE_STABLE_READS)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("FEEDROUTER_LOG_LEVEL", "INFO"),
        help="Logging level (env: FEEDROUTER_LOG_LEVEL)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        name: getattr(args, name)
        for name in ("source_url", "host", "port", "poll_interval_ms", "stable_reads")
        if getattr(args, name) is not None
    }
    try:
        config = RouterConfig.from_env(**overrides)
    except RouterConfigError as exc:
        print(f"feedrouter: {exc}", file=sys.stderr)
        return 2

    app = create_app(FeedRouter(config))
    logging.getLogger("feedrouter").info("Feed router listening on http://%s:%d", config.host, config.port)
    web.run_app(app, host=config.host, port=config.port, print=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
