"""add payment detail columns and the payment timeout index

Revision ID: 0002_add_payment_fields
Revises: 0001_init
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = '0002_add_payment_fields'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table('orders') as batch_op:
        batch_op.add_column(sa.Column('payment_method', sa.String(20), nullable=True))
        batch_op.add_column(sa.Column('payment_time', sa.DateTime(), nullable=True))
        batch_op.add_column(sa.Column('payment_transaction_id', sa.String(64), nullable=True))
        batch_op.add_column(sa.Column('prepay_id', sa.String(64), nullable=True))
        batch_op.add_column(sa.Column('payment_expire_time', sa.DateTime(), nullable=True))

    # Orders created before this revision get the standard 15 minute window
    if op.get_bind().dialect.name == 'postgresql':
        expiry = "create_time + INTERVAL '15 minutes'"
    else:
        expiry = "datetime(create_time, '+15 minutes')"
    op.execute(f"UPDATE orders SET payment_expire_time = {expiry} WHERE payment_expire_time IS NULL")

    with op.batch_alter_table('orders') as batch_op:
        batch_op.alter_column('payment_expire_time', existing_type=sa.DateTime(), nullable=False)

    op.create_index('ix_orders_expiry_scan', 'orders', ['status', 'payment_status', 'payment_expire_time'])


def downgrade() -> None:
    op.drop_index('ix_orders_expiry_scan', table_name='orders')
    with op.batch_alter_table('orders') as batch_op:
        batch_op.drop_column('payment_expire_time')
        batch_op.drop_column('prepay_id')
        batch_op.drop_column('payment_transaction_id')
        batch_op.drop_column('payment_time')
        batch_op.drop_column('payment_method')
