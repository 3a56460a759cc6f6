"""Create api_metrics table

Revision ID: 001
Revises:
Create Date: 2026-01-12 09:00:00.000000

Databases bootstrapped by hand before migrations existed already have the
table, so every object is created only if it is missing.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

INDEXES = {
  'idx_route': ['route'],
  'idx_timestamp': ['timestamp'],
  'idx_is_error': ['is_error'],
  'idx_method': ['method'],
}


def upgrade():
  inspector = sa.inspect(op.get_bind())

  if not inspector.has_table('api_metrics'):
    op.create_table(
      'api_metrics',
      sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
      sa.Column('route', sa.Text(), nullable=False),
      sa.Column('method', sa.String(length=16), nullable=False),
      sa.Column('status', sa.Integer(), nullable=False),
      sa.Column('response_time', sa.Integer(), nullable=False),
      sa.Column('is_error', sa.Boolean(), nullable=False),
      sa.Column('timestamp', sa.DateTime(), nullable=False),
      sa.Column('source_port', sa.Integer(), nullable=True),
      sa.PrimaryKeyConstraint('id'),
    )
    existing = set()
  else:
    existing = {ix['name'] for ix in inspector.get_indexes('api_metrics')}

  for name, columns in INDEXES.items():
    if name not in existing:
      op.create_index(name, 'api_metrics', columns)


def downgrade():
  for name in reversed(list(INDEXES)):
    op.drop_index(name, table_name='api_metrics')
  op.drop_table('api_metrics')
