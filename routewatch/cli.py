"""Command-line entry points for the collector, the proxy and store maintenance.

    routewatch collector --port 3002
    routewatch proxy --upstream http://localhost:8081 --service orders --port 8080
    routewatch migrate
    routewatch purge --days 7
    routewatch stats --service orders
"""

import dataclasses
import sys
from datetime import timedelta

import click
import uvicorn
from rich.console import Console
from rich.table import Table

from routewatch.lib.config import load_settings
from routewatch.lib.errors import MigrationFailure, PersistenceError
from routewatch.lib.structured_logger import configure_logging
from routewatch.services.metric_store import MetricStore

console = Console()


@click.group()
@click.option('--log-level', default=None, help='Log level (defaults to LOG_LEVEL or INFO)')
@click.option('--plain-logs', is_flag=True, help='Plain text logs instead of JSON lines')
@click.pass_context
def cli(ctx, log_level, plain_logs):
  """RouteWatch HTTP telemetry pipeline."""
  configure_logging(log_level, json_output=not plain_logs)
  ctx.obj = load_settings()


@cli.command()
@click.option('--host', default='127.0.0.1', help='Interface to bind')
@click.option('--port', default=3002, type=int, help='Port to listen on')
@click.option('--database-url', default=None, help='Metrics store URL (ROUTEWATCH_DATABASE_URL)')
@click.pass_obj
def collector(settings, host, port, database_url):
  """Run the metrics collector (ingestion, queries, live channel)."""
  from routewatch.app import create_app

  if database_url:
    settings = dataclasses.replace(settings, database_url=database_url)
  console.print(f'[bold]Collector[/bold] on http://{host}:{port}, store {settings.database_url}')
  uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@cli.command()
@click.option('--host', default='127.0.0.1', help='Interface to bind')
@click.option('--port', default=8080, type=int, help='Port to listen on')
@click.option('--upstream', default=None, help='Upstream base URL (ROUTEWATCH_UPSTREAM_URL)')
@click.option('--collector', 'collector_url', default=None, help='Collector ingestion URL')
@click.option('--service', 'service_name', default=None, help='Service name reported with metrics')
@click.pass_obj
def proxy(settings, host, port, upstream, collector_url, service_name):
  """Run a measuring proxy in front of one upstream service."""
  from routewatch.proxy import create_proxy_app

  overrides = {
    'upstream_url': upstream,
    'collector_url': collector_url,
    'service_name': service_name,
  }
  settings = dataclasses.replace(settings, **{k: v for k, v in overrides.items() if v})
  console.print(
    f'[bold]Proxy[/bold] http://{host}:{port} -> {settings.upstream_url} '
    f'(reporting to {settings.collector_url})'
  )
  uvicorn.run(create_proxy_app(settings), host=host, port=port, log_config=None)


@cli.command()
@click.pass_obj
def migrate(settings):
  """Create or upgrade the metrics store schema."""
  store = MetricStore.from_settings(settings)
  try:
    store.migrate()
    snapshot = store.schema_snapshot()
  except (MigrationFailure, PersistenceError) as e:
    console.print(f'[red]Migration failed: {e}[/red]')
    sys.exit(1)
  finally:
    store.dispose()

  table = Table(title=f'Schema at {settings.database_url}')
  table.add_column('Table')
  table.add_column('Columns')
  table.add_column('Indexes')
  for name, details in sorted(snapshot.items()):
    table.add_row(name, ', '.join(details['columns']), ', '.join(details['indexes']))
  console.print(table)


@cli.command()
@click.option('--days', default=None, type=int, help='Retention in days (ROUTEWATCH_RETENTION_DAYS)')
@click.pass_obj
def purge(settings, days):
  """Delete metric records older than the retention period."""
  retention_days = days if days is not None else settings.retention_days
  store = MetricStore.from_settings(settings)
  try:
    store.migrate()
    removed = store.purge_older_than(timedelta(days=retention_days))
  except MigrationFailure as e:
    console.print(f'[red]Migration failed: {e}[/red]')
    sys.exit(1)
  except PersistenceError as e:
    console.print(f'[red]Purge failed: {e}[/red]')
    sys.exit(2)
  finally:
    store.dispose()

  console.print(f'[green]✓ Removed {removed} records older than {retention_days} days[/green]')


@cli.command()
@click.option('--service', default=None, help='Limit the totals to one service')
@click.pass_obj
def stats(settings, service):
  """Show how much history is stored and which services report to it."""
  store = MetricStore.from_settings(settings)
  try:
    store.migrate()
    totals = store.stats(service)
    services = store.list_services()
  except MigrationFailure as e:
    console.print(f'[red]Migration failed: {e}[/red]')
    sys.exit(1)
  except PersistenceError as e:
    console.print(f'[red]Store unavailable: {e}[/red]')
    sys.exit(2)
  finally:
    store.dispose()

  scope = service or 'all services'
  console.print(
    f'[bold]{totals["totalRecords"]}[/bold] records, {totals["uniqueRoutes"]} routes ({scope}), '
    f'oldest {totals["oldestRecord"] or "-"}, newest {totals["newestRecord"] or "-"}'
  )

  table = Table(title='Services')
  table.add_column('Service')
  table.add_column('Requests', justify='right')
  for row in services:
    table.add_row(row['serviceName'], str(row['requests']))
  console.print(table)


if __name__ == '__main__':
  cli()
