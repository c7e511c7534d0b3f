"""
Command line entry point.

    savana fetch                 poll every node once and exit (for cron)
    savana serve [--host --port] run the API with interval polling

`fetch` exits 0 when at least one node was stored, 1 when none were and
2 when the configuration is incomplete or the store cannot be opened.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from savana.config import Settings, configure_logging
from savana.errors import ConfigurationError, SavanaError

logger = logging.getLogger("savana.fetch")

EXIT_OK = 0
EXIT_NO_NODES = 1
EXIT_CONFIG = 2


async def _fetch_once(settings: Settings) -> int:
    from savana.services import Collector

    collector = Collector(settings)
    try:
        await collector.start(schedule=False)
        result = await collector.run_now()
    finally:
        await collector.shutdown()

    logger.info(f"Sensor data fetch completed: {result.succeeded}/{result.total} nodes stored")
    return EXIT_OK if result.succeeded > 0 else EXIT_NO_NODES


def fetch(settings: Settings) -> int:
    try:
        settings.require_ingest()
    except ConfigurationError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_CONFIG
    logger.info("Starting multi-node sensor data fetch process")
    try:
        return asyncio.run(_fetch_once(settings))
    except SavanaError as e:
        # store could not be opened; no node was attempted
        logger.error(f"ERROR: {e.stage} failed: {e}")
        return EXIT_CONFIG


def serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("savana.main:app", host=host, port=port)
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="savana", description="SAVANA sensor collector")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("fetch", help="Poll every configured node once and exit")

    serve_parser = sub.add_parser("serve", help="Run the API with interval polling")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"ERROR: {e}")
        return EXIT_CONFIG
    configure_logging(settings.log_level)

    if args.command == "fetch":
        return fetch(settings)
    return serve(args.host, args.port)


if __name__ == "__main__":
    sys.exit(main())
