"""Periodic retry worker.

Runs one retry batch per interval until cancelled or stopped. A batch that
raises is logged and the loop carries on with the next interval.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from formflow.service import DispatchService

logger = structlog.get_logger(__name__)


async def run_worker(
    service: DispatchService,
    interval: float | None = None,
    stop: asyncio.Event | None = None,
) -> int:
    """Process due retries every ``interval`` seconds.

    Args:
        service: Initialized dispatch service.
        interval: Seconds between batches. Defaults to ``worker_interval_seconds``.
        stop: Optional event that ends the loop once set.

    Returns:
        Number of batches run.
    """
    interval = service.settings.worker_interval_seconds if interval is None else interval
    stop = stop or asyncio.Event()
    log = logger.bind(component="retry_worker", interval_seconds=interval)
    log.info("retry_worker_started")

    batches = 0
    try:
        while not stop.is_set():
            try:
                results = await service.process_retries()
            except Exception as e:
                log.error("retry_worker_batch_failed", error=str(e), exc_info=True)
            else:
                batches += 1
                if results["processed"]:
                    log.info("retry_worker_batch_done", batch=batches, **results)

            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except TimeoutError:
                pass
    finally:
        log.info("retry_worker_stopped", batches=batches)
    return batches


__all__ = ["run_worker"]
