"""Metrics Database Connection Module

Provides the SQLAlchemy engine for the metrics store. SQLite is the default
backend: connections run in write-ahead-log mode with a bounded busy timeout so
dashboard reads do not block on ingestion and a lock wait cannot grow unbounded.
"""

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def is_sqlite_url(url: str) -> bool:
    return url.startswith('sqlite')


def _is_memory_url(url: str) -> bool:
    return url in ('sqlite://', 'sqlite:///:memory:') or 'mode=memory' in url


def create_metrics_engine(database_url: str, busy_timeout_ms: int = 5000) -> Engine:
    """Create SQLAlchemy engine for the metrics store.

    For SQLite the pysqlite driver's implicit transaction handling is disabled
    and SQLAlchemy emits BEGIN itself, so DDL issued by migrations is part of the
    surrounding transaction.

    Args:
        database_url: SQLAlchemy database URL
        busy_timeout_ms: How long a connection waits for a lock before failing

    Returns:
        Configured SQLAlchemy engine

    Example:
        engine = create_metrics_engine('sqlite:///metrics.db')
        with engine.connect() as conn:
            conn.execute(text('SELECT COUNT(*) FROM api_metrics'))
    """
    if not is_sqlite_url(database_url):
        return create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)

    kwargs = {
        'connect_args': {
            'check_same_thread': False,
            'timeout': busy_timeout_ms / 1000,
        }
    }
    if _is_memory_url(database_url):
        # One shared connection, otherwise each checkout sees an empty database
        kwargs['poolclass'] = StaticPool

    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, 'connect')
    def configure_sqlite(dbapi_connection, connection_record):
        """Enable WAL and the busy timeout on every new connection."""
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute('PRAGMA journal_mode=WAL')
            cursor.execute(f'PRAGMA busy_timeout={int(busy_timeout_ms)}')
        finally:
            cursor.close()

    @event.listens_for(engine, 'begin')
    def begin_sqlite(conn):
        conn.exec_driver_sql('BEGIN')

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Get session factory for ORM operations.

    Args:
        engine: Engine returned by create_metrics_engine

    Returns:
        Session factory bound to the engine
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
