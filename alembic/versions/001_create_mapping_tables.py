"""Create mapping, metrics cache and local state tables

Revision ID: 001_create_mapping_tables
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_create_mapping_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    """Create manual_links, auto_links, metrics_cache, reading_progress and platform_tokens."""
    op.create_table(
        'manual_links',
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('target_platform', sa.String(length=50), nullable=False),
        sa.Column('target_slug', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('platform', 'slug', 'target_platform')
    )

    op.create_table(
        'auto_links',
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('target_platform', sa.String(length=50), nullable=False),
        sa.Column('target_slug', sa.String(length=255), nullable=True),
        sa.Column('expires', sa.Float(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('platform', 'slug', 'target_platform')
    )
    op.create_index('idx_auto_links_expires', 'auto_links', ['expires'], unique=False)

    op.create_table(
        'metrics_cache',
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('available_units', sa.Float(), nullable=False),
        sa.Column('consumed_units', sa.Float(), nullable=False),
        sa.Column('expires', sa.Float(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('platform', 'slug')
    )
    op.create_index('idx_metrics_cache_expires', 'metrics_cache', ['expires'], unique=False)

    op.create_table(
        'reading_progress',
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('units', sa.Float(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('platform', 'slug')
    )

    op.create_table(
        'platform_tokens',
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('token', sa.Text(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('platform')
    )


def downgrade() -> None:
    """Drop every table created above."""
    op.drop_table('platform_tokens')
    op.drop_table('reading_progress')
    op.drop_index('idx_metrics_cache_expires', table_name='metrics_cache')
    op.drop_table('metrics_cache')
    op.drop_index('idx_auto_links_expires', table_name='auto_links')
    op.drop_table('auto_links')
    op.drop_table('manual_links')
