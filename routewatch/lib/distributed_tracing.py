"""Correlation IDs shared by the collector, the proxy and their logs.

Uses contextvars so the ID follows a request through awaits.
"""

import contextvars
from uuid import uuid4

CORRELATION_HEADER = 'X-Correlation-ID'

correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
  'request_id', default='no-request-id'
)


def get_correlation_id() -> str:
  """Retrieve the current request's correlation ID.

  Returns:
      Current correlation ID or 'no-request-id' if not set
  """
  return correlation_id.get()


def set_correlation_id(request_id: str) -> None:
  """Set the correlation ID for the current request context."""
  correlation_id.set(request_id)


def correlation_id_from(headers) -> str:
  """Take the correlation ID from request headers, or generate one.

  Args:
      headers: Mapping of request headers (case-insensitive lookup)

  Returns:
      The incoming X-Correlation-ID or a fresh UUID
  """
  incoming = headers.get(CORRELATION_HEADER)
  return incoming if incoming else str(uuid4())
