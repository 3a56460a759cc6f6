"""Structured Logger with JSON Formatting.

Provides structured logging with JSON output for machine-readable logs.
Modules log through `logging.getLogger(__name__)`; `configure_logging()`
attaches the JSON handler to the `routewatch` logger tree once at startup.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any

from routewatch.lib.distributed_tracing import get_correlation_id

_CONTEXT_FIELDS = (
    'route',
    'method',
    'status_code',
    'duration_ms',
    'service_name',
    'upstream',
    'metric_id',
)

logger = logging.getLogger('routewatch.requests')


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'request_id': get_correlation_id(),
        }

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        return json.dumps(log_data, default=str)


def configure_logging(level: str | None = None, json_output: bool = True) -> None:
    """Install the RouteWatch log handler.

    Safe to call more than once; the handler is replaced, never duplicated.

    Args:
        level: Log level name, defaults to LOG_LEVEL env var or INFO
        json_output: Emit JSON lines instead of plain text
    """
    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    root = logging.getLogger('routewatch')
    root.setLevel(getattr(logging, level_name, logging.INFO))

    root.handlers.clear()
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
    root.addHandler(handler)
    root.propagate = False


def log_request(
    route: str, method: str, status_code: int, duration_ms: float, **extra: Any
) -> None:
    """Log one handled request with its timing.

    Args:
        route: Request path
        method: HTTP method
        status_code: Response status code
        duration_ms: Handling time in milliseconds
        **extra: Additional context (service_name, upstream, ...)
    """
    logger.info(
        f'{method} {route} {status_code} ({duration_ms:.1f}ms)',
        extra={
            'route': route,
            'method': method,
            'status_code': status_code,
            'duration_ms': round(duration_ms, 2),
            **extra,
        },
    )
