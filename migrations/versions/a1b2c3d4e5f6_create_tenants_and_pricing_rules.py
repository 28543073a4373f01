"""Create tenants and pricing_rules tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create tenants and pricing_rules tables."""
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_name', sa.String(255), nullable=False),
        sa.Column('shop_slug', sa.String(100), nullable=False),
        sa.Column('shopify_domain', sa.String(255), nullable=True),
        sa.Column('shopify_access_token', sa.Text(), nullable=True),
        sa.Column('currency_code', sa.String(3), nullable=True, default='USD'),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, default=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_slug')
    )
    op.create_index('ix_tenants_shopify_domain', 'tenants', ['shopify_domain'])

    op.create_table(
        'pricing_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('discount_title', sa.String(255), nullable=True),
        sa.Column('apply_to_customers', sa.String(30), nullable=False, server_default='all'),
        sa.Column('customer_tags', sa.JSON(), nullable=True),
        sa.Column('specific_customers', sa.JSON(), nullable=True),
        sa.Column('apply_to_products', sa.String(30), nullable=False, server_default='all'),
        sa.Column('specific_products', sa.JSON(), nullable=True),
        sa.Column('collections', sa.JSON(), nullable=True),
        sa.Column('product_tags', sa.JSON(), nullable=True),
        sa.Column('price_type', sa.String(20), nullable=False, server_default='percent_off'),
        sa.Column('discount_value', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('external_discount_id', sa.String(255), nullable=True),
        sa.Column('sync_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_index('ix_pricing_rules_tenant_id', 'pricing_rules', ['tenant_id'])
    op.create_index('ix_pricing_rules_external_discount_id', 'pricing_rules', ['external_discount_id'])
    op.create_index('ix_pricing_rules_status', 'pricing_rules', ['status'])


def downgrade():
    """Remove pricing_rules and tenants tables."""
    op.drop_index('ix_pricing_rules_status', table_name='pricing_rules')
    op.drop_index('ix_pricing_rules_external_discount_id', table_name='pricing_rules')
    op.drop_index('ix_pricing_rules_tenant_id', table_name='pricing_rules')
    op.drop_table('pricing_rules')
    op.drop_index('ix_tenants_shopify_domain', table_name='tenants')
    op.drop_table('tenants')
