"""Add product_discount_ids to pricing_rules

Revision ID: b2c3d4e5f6a7
Revises: a1b2c3d4e5f6
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b2c3d4e5f6a7'
down_revision = 'a1b2c3d4e5f6'
branch_labels = None
depends_on = None


def upgrade():
    # Per-product discounts owned by new_price rules
    with op.batch_alter_table('pricing_rules', schema=None) as batch_op:
        batch_op.add_column(sa.Column('product_discount_ids', sa.JSON(), nullable=True))


def downgrade():
    with op.batch_alter_table('pricing_rules', schema=None) as batch_op:
        batch_op.drop_column('product_discount_ids')
