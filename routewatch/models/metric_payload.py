"""Inbound metric payload and its normalization into a resolved record."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator

from routewatch.models.metric_record import UNKNOWN_SERVICE


class MetricPayload(BaseModel):
    """Metric report as posted to the ingestion endpoint.

    Types are strict: a status of "200" or 200.5 is rejected rather than coerced.
    Unknown fields are ignored.
    """

    model_config = ConfigDict(extra='ignore')

    route: StrictStr = Field(..., description='Request path including query string')
    method: StrictStr = Field(..., description='HTTP method')
    status: StrictInt = Field(..., ge=100, le=599, description='HTTP status code')
    responseTime: StrictInt = Field(..., ge=0, description='Round trip in milliseconds')
    isError: Optional[StrictBool] = Field(None, description='Defaults to status >= 400')
    sourcePort: Optional[StrictInt] = Field(None, description='Port of the reporting upstream')
    serviceName: Optional[StrictStr] = None

    @field_validator('route')
    @classmethod
    def require_route(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('must be a non-empty string')
        return v

    @field_validator('method')
    @classmethod
    def require_method(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('must be a non-empty string')
        return v.strip()

    def resolve(self) -> 'ResolvedMetric':
        """Apply defaults and normalization; the result is never re-interpreted."""
        service_name = (self.serviceName or '').strip()
        if not service_name:
            service_name = f'port-{self.sourcePort}' if self.sourcePort is not None else UNKNOWN_SERVICE

        return ResolvedMetric(
            route=self.route,
            method=self.method.upper(),
            status=self.status,
            response_time=self.responseTime,
            is_error=self.isError if self.isError is not None else self.status >= 400,
            source_port=self.sourcePort,
            service_name=service_name,
        )


class ResolvedMetric(BaseModel):
    """A validated metric with every derived field filled in."""

    model_config = ConfigDict(frozen=True)

    route: str
    method: str
    status: int
    response_time: int
    is_error: bool
    source_port: Optional[int] = None
    service_name: str
