"""Periodic retention sweep for the metric store."""

import asyncio
import logging
from datetime import timedelta

from starlette.concurrency import run_in_threadpool

from routewatch.lib.errors import PersistenceError
from routewatch.lib.metrics import record_purge
from routewatch.services.metric_store import MetricStore

logger = logging.getLogger(__name__)


async def purge_once(store: MetricStore, retention: timedelta) -> int:
    """Run one purge in a worker thread and count what it removed."""
    removed = await run_in_threadpool(store.purge_older_than, retention)
    record_purge(removed)
    return removed


async def run_retention_sweeps(store: MetricStore, retention: timedelta, interval: float) -> None:
    """Purge expired records every `interval` seconds until cancelled.

    The first sweep runs immediately. A failed sweep is logged and retried on
    the next tick.

    Args:
        store: Metric store to purge
        retention: Maximum age of kept records
        interval: Seconds between sweeps
    """
    logger.info(f'Retention sweep every {interval:.0f}s, keeping {retention.days} days')
    while True:
        try:
            await purge_once(store, retention)
        except PersistenceError as e:
            logger.error(f'Retention sweep failed: {e}')
        except Exception as e:
            logger.exception(f'Retention sweep failed unexpectedly: {e}')
        await asyncio.sleep(interval)
