"""Add service_name to api_metrics

Revision ID: 002
Revises: 001
Create Date: 2026-02-03 14:30:00.000000

Rows written before multi-service support are attributed to
'port-<source_port>' when a port was reported, 'unknown' otherwise.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
  bind = op.get_bind()
  inspector = sa.inspect(bind)
  columns = {col['name'] for col in inspector.get_columns('api_metrics')}

  if 'service_name' not in columns:
    with op.batch_alter_table('api_metrics') as batch_op:
      batch_op.add_column(
        sa.Column('service_name', sa.Text(), nullable=False, server_default='unknown')
      )

    op.execute(
      sa.text(
        "UPDATE api_metrics SET service_name = 'port-' || CAST(source_port AS VARCHAR) "
        'WHERE source_port IS NOT NULL'
      )
    )

  indexes = {ix['name'] for ix in sa.inspect(bind).get_indexes('api_metrics')}
  if 'idx_service_name' not in indexes:
    op.create_index('idx_service_name', 'api_metrics', ['service_name'])


def downgrade():
  op.drop_index('idx_service_name', table_name='api_metrics')
  with op.batch_alter_table('api_metrics') as batch_op:
    batch_op.drop_column('service_name')
