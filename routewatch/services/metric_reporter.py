"""Best-effort delivery of metric reports to the collector.

A report must never affect the traffic it describes: every failure (collector
down, slow, or answering with an error) is logged and swallowed, and each
attempt is bounded by its own short timeout.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from routewatch.lib.distributed_tracing import CORRELATION_HEADER
from routewatch.lib.metrics import record_report_failure

logger = logging.getLogger(__name__)


class MetricReporter:
    """Posts metric payloads to the collector's ingestion endpoint.

    Use as an async context manager or call `aclose()` at shutdown:

        async with MetricReporter('http://localhost:3002/api/metrics') as reporter:
            reporter.dispatch({...})
    """

    def __init__(
        self,
        collector_url: str,
        timeout: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the reporter.

        Args:
            collector_url: Full URL of POST /api/metrics on the collector
            timeout: Per-report timeout in seconds
            transport: Optional httpx transport (tests use MockTransport/ASGITransport)
        """
        self.collector_url = collector_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._pending: Set[asyncio.Task] = set()

    async def __aenter__(self) -> 'MetricReporter':
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def send(self, payload: Dict[str, Any], correlation_id: Optional[str] = None) -> bool:
        """Deliver one report, swallowing every failure.

        Returns:
            True if the collector acknowledged the report with a 2xx
        """
        headers = {CORRELATION_HEADER: correlation_id} if correlation_id else None
        try:
            response = await self._client.post(self.collector_url, json=payload, headers=headers)
        except httpx.TimeoutException:
            record_report_failure()
            logger.warning(f'Metric report to {self.collector_url} timed out after {self.timeout}s')
            return False
        except httpx.HTTPError as e:
            record_report_failure()
            logger.warning(f'Metric report to {self.collector_url} failed: {e}')
            return False
        except Exception as e:
            record_report_failure()
            logger.error(f'Unexpected error reporting metric: {e}', exc_info=True)
            return False

        if response.status_code >= 400:
            record_report_failure()
            logger.warning(
                f'Collector rejected metric report ({response.status_code}): {response.text[:200]}'
            )
            return False
        return True

    def dispatch(self, payload: Dict[str, Any], correlation_id: Optional[str] = None) -> asyncio.Task:
        """Schedule `send` without waiting for it.

        The task is referenced until it finishes so it is not garbage collected
        mid-flight.
        """
        task = asyncio.get_running_loop().create_task(self.send(payload, correlation_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for dispatched reports still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
