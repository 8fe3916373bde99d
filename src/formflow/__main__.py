"""Command line entry point: ``python -m formflow``.

Runs the retry worker against the configured database, either once or on
the configured cadence.
"""

from __future__ import annotations

import argparse
import asyncio
import json

from formflow.config import Settings
from formflow.logging import configure_from_settings, get_logger
from formflow.service import DispatchService
from formflow.worker import run_worker

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="formflow",
        description="Process the FormFlow retry queue.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single batch and exit",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Records per batch (default: FORMFLOW_RETRY_BATCH_SIZE)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between batches (default: FORMFLOW_WORKER_INTERVAL_SECONDS)",
    )
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> None:
    async with DispatchService.create(settings) as service:
        if args.once:
            results = await service.process_retries(args.limit)
            print(json.dumps(results))
            return
        if args.limit is not None:
            service.settings.retry_batch_size = args.limit
        await run_worker(service, args.interval)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, configure logging and run the worker."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    configure_from_settings(settings)
    try:
        asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.info("retry_worker_interrupted")


if __name__ == "__main__":
    main()
