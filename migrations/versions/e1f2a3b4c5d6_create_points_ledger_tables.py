"""Create points ledger tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e1f2a3b4c5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('services',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=30), nullable=False, server_default='OTHER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_index('ix_services_category', 'services', ['category'])
    op.create_index('ix_services_is_active', 'services', ['is_active'])

    op.create_table('service_configs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('service_id', sa.String(length=36), nullable=False),
        sa.Column('rule_type', sa.String(length=10), nullable=False),
        sa.Column('points_per_unit', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('unit_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('min_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('max_points', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('expiry_days', sa.Integer(), nullable=True),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_service_configs_lookup', 'service_configs', ['service_id', 'rule_type', 'is_active'])
    op.create_index('ix_service_configs_window', 'service_configs', ['valid_from', 'valid_until'])

    op.create_table('wallets',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('balance', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_burned', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_expired', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('last_activity_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )

    op.create_table('transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('service_id', sa.String(length=36), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('points', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('balance_before', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('balance_after', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='COMPLETED'),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'])
    op.create_index('ix_transactions_service', 'transactions', ['service_id'])
    op.create_index('ix_transactions_type', 'transactions', ['type'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])

    op.create_table('point_balances',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('wallet_id', sa.String(length=36), nullable=False),
        sa.Column('transaction_id', sa.String(length=36), nullable=True),
        sa.Column('points', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('earned_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('is_expired', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id'], ),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id')
    )
    op.create_index('ix_point_balances_wallet', 'point_balances', ['wallet_id'])
    op.create_index('ix_point_balances_expiry', 'point_balances', ['expires_at', 'is_expired'])


def downgrade():
    op.drop_index('ix_point_balances_expiry', table_name='point_balances')
    op.drop_index('ix_point_balances_wallet', table_name='point_balances')
    op.drop_table('point_balances')
    op.drop_index('ix_transactions_status', table_name='transactions')
    op.drop_index('ix_transactions_type', table_name='transactions')
    op.drop_index('ix_transactions_service', table_name='transactions')
    op.drop_index('ix_transactions_user_created', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('wallets')
    op.drop_index('ix_service_configs_window', table_name='service_configs')
    op.drop_index('ix_service_configs_lookup', table_name='service_configs')
    op.drop_table('service_configs')
    op.drop_index('ix_services_is_active', table_name='services')
    op.drop_index('ix_services_category', table_name='services')
    op.drop_table('services')
