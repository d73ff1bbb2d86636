"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the tenant sync state and sign-in record tables."""

    # Create tenant_sync_state table
    op.create_table(
        'tenant_sync_state',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('signin_cursor', sa.String(length=64), nullable=True),
        sa.Column('signin_last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('signins_synced_total', sa.Integer(), server_default='0', nullable=False),
        sa.Column('sync_enabled', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('tenant_id')
    )

    # Create signin_records table
    op.create_table(
        'signin_records',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('user_display_name', sa.String(length=255), nullable=True),
        sa.Column('user_principal_name', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('app_display_name', sa.String(length=255), nullable=True),
        sa.Column('resource_display_name', sa.String(length=255), nullable=True),
        sa.Column('client_app_used', sa.String(length=100), nullable=True),
        sa.Column('source_channel', sa.String(length=32), nullable=False),
        sa.Column('device_display_name', sa.String(length=255), nullable=True),
        sa.Column('operating_system', sa.String(length=100), nullable=True),
        sa.Column('browser', sa.String(length=100), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('location_city', sa.String(length=100), nullable=True),
        sa.Column('location_country_or_region', sa.String(length=16), nullable=True),
        sa.Column('status_error_code', sa.Integer(), nullable=True),
        sa.Column('status_failure_reason', sa.Text(), nullable=True),
        sa.Column('risk_state', sa.String(length=50), nullable=True),
        sa.Column('risk_detail', sa.String(length=100), nullable=True),
        sa.Column('conditional_access_status', sa.String(length=50), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=True),
        sa.Column('is_interactive', sa.Boolean(), nullable=True),
        sa.Column('raw', sa.JSON(), nullable=True),
        sa.Column('ingested_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('tenant_id', 'id')
    )
    op.create_index(
        'idx_signin_records_tenant_occurred',
        'signin_records',
        ['tenant_id', 'occurred_at'],
        unique=False
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_signin_records_tenant_occurred', table_name='signin_records')
    op.drop_table('signin_records')
    op.drop_table('tenant_sync_state')
