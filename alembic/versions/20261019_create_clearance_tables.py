"""Create categories, deals and activity_logs tables

Revision ID: clearance_001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'clearance_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sa.UniqueConstraint('slug'),
    )

    op.create_table(
        'deals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('title', sa.String(500), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('image_url', sa.Text(), nullable=False, server_default=''),
        sa.Column('current_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('original_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('price_ending', sa.String(3), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('online_available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('in_store_available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('availability_data', sa.JSON(), nullable=False),
        sa.Column('store_locations', sa.JSON(), nullable=False),
        sa.Column('is_featured', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('source', sa.String(20), nullable=False, server_default='api'),
        sa.Column('last_updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )

    # Clé naturelle
    op.create_index('ix_deals_sku', 'deals', ['sku'], unique=True)
    op.create_index('ix_deals_price_ending', 'deals', ['price_ending'])
    op.create_index('ix_deals_featured_updated', 'deals', ['is_featured', 'last_updated_at'])
    op.create_index('ix_deals_category', 'deals', ['category_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activity_logs_type', 'activity_logs', ['type'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_activity_logs_created_at', table_name='activity_logs')
    op.drop_index('ix_activity_logs_type', table_name='activity_logs')
    op.drop_table('activity_logs')

    op.drop_index('ix_deals_category', table_name='deals')
    op.drop_index('ix_deals_featured_updated', table_name='deals')
    op.drop_index('ix_deals_price_ending', table_name='deals')
    op.drop_index('ix_deals_sku', table_name='deals')
    op.drop_table('deals')

    op.drop_table('categories')
