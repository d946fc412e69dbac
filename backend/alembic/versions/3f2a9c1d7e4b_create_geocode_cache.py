"""create geocode cache

Revision ID: 3f2a9c1d7e4b
Revises:
Create Date: 2026-10-17 10:12:44.501932

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3f2a9c1d7e4b'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'geocode_cache',
        sa.Column('cache_key', sa.String(255), primary_key=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('postal', sa.String(20), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Oldest entries first when re-validating the cache
    op.create_index('idx_geocode_cache_updated', 'geocode_cache', ['updated_at'])


def downgrade() -> None:
    op.drop_index('idx_geocode_cache_updated', table_name='geocode_cache')
    op.drop_table('geocode_cache')
