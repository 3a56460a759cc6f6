"""Error taxonomy for the telemetry pipeline."""


class RouteWatchError(Exception):
    """Base class for all RouteWatch errors."""


class ValidationError(RouteWatchError):
    """Inbound metric payload is malformed or out of range.

    Attributes:
        field: Name of the violated field, if known
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class PersistenceError(RouteWatchError):
    """The metric store is unavailable or a write failed."""


class MigrationFailure(RouteWatchError):
    """Schema migration failed; the store is in an unknown state."""


class UpstreamError(RouteWatchError):
    """Proxied request failed at the transport layer.

    Attributes:
        status_code: Gateway status synthesized for the proxy's caller
    """

    status_code = 502

    def __init__(self, message: str, upstream: str | None = None):
        super().__init__(message)
        self.upstream = upstream


class UpstreamUnreachable(UpstreamError):
    """Upstream refused or dropped the connection."""

    status_code = 503


class UpstreamTimeout(UpstreamError):
    """Upstream did not answer within the proxy timeout."""

    status_code = 504
