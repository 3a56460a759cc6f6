from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from routewatch.lib.database import Base

UNKNOWN_SERVICE = 'unknown'


class MetricRecord(Base):
  """One observed request/response exchange.

  Records are created once by ingestion and never updated; rows leave the
  table only through the retention sweep or a per-service clear.
  """

  __tablename__ = 'api_metrics'

  id = Column(Integer, primary_key=True, autoincrement=True)
  route = Column(Text, nullable=False)
  method = Column(String(16), nullable=False)
  status = Column(Integer, nullable=False)
  response_time = Column(Integer, nullable=False)
  is_error = Column(Boolean, nullable=False)
  timestamp = Column(DateTime, nullable=False)
  source_port = Column(Integer, nullable=True)
  service_name = Column(Text, nullable=False, default=UNKNOWN_SERVICE)

  __table_args__ = (
    Index('idx_route', 'route'),
    Index('idx_timestamp', 'timestamp'),
    Index('idx_is_error', 'is_error'),
    Index('idx_method', 'method'),
    Index('idx_service_name', 'service_name'),
  )

  def to_dict(self) -> dict:
    """Serialize to the camelCase shape used by the API and live events."""
    timestamp = self.timestamp
    if timestamp is not None and timestamp.tzinfo is None:
      timestamp = timestamp.replace(tzinfo=timezone.utc)
    return {
      'id': self.id,
      'route': self.route,
      'method': self.method,
      'status': self.status,
      'responseTime': self.response_time,
      'isError': bool(self.is_error),
      'sourcePort': self.source_port,
      'serviceName': self.service_name,
      'timestamp': timestamp.isoformat() if timestamp else None,
    }

  def __repr__(self) -> str:
    return f'<MetricRecord {self.id} {self.method} {self.route} {self.status}>'


def utcnow() -> datetime:
  """Naive UTC now; the store keeps timestamps as naive UTC."""
  return datetime.now(timezone.utc).replace(tzinfo=None)
