"""One-shot retention job for the metrics store.

Deletes metric records older than the retention period (ROUTEWATCH_RETENTION_DAYS,
7 days by default). Intended for cron or a scheduled job when the collector's
own retention sweep is disabled.

Exit codes:
    0: purge completed
    1: database unavailable or schema migration failed
    2: purge failed
"""

import logging
import sys
from datetime import timedelta
from typing import Optional

from routewatch.lib.config import Settings, load_settings
from routewatch.lib.errors import MigrationFailure, PersistenceError
from routewatch.services.metric_store import MetricStore

# Configure logging
logging.basicConfig(
  level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def purge_expired_metrics(store: MetricStore, retention_days: int) -> int:
  """Delete records older than `retention_days`.

  Args:
      store: Migrated metric store
      retention_days: Age limit in days

  Returns:
      Number of records deleted
  """
  cutoff = store.now() - timedelta(days=retention_days)
  logger.info(f'Purging metric records older than {cutoff.isoformat()}')
  removed = store.purge_older_than(timedelta(days=retention_days))
  logger.info(f'Deleted {removed} metric records')
  return removed


def main(settings: Optional[Settings] = None, store: Optional[MetricStore] = None):
  """Main entry point for the retention job."""
  logger.info('Starting metrics retention job')

  settings = settings or load_settings()
  try:
    store = store or MetricStore.from_settings(settings)
    store.migrate()
  except (MigrationFailure, PersistenceError) as e:
    logger.error(f'Metrics store unavailable: {e}')
    sys.exit(1)
  except Exception as e:
    logger.error(f'Fatal error opening metrics store: {e}', exc_info=True)
    sys.exit(1)

  try:
    purge_expired_metrics(store, settings.retention_days)
  except PersistenceError as e:
    logger.error(f'Retention job failed: {e}')
    sys.exit(2)
  finally:
    store.dispose()

  logger.info('Retention job completed successfully')
  sys.exit(0)


if __name__ == '__main__':
  main()
