from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('openid', sa.String(64), nullable=True, unique=True),
        sa.Column('nickname', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('balance', sa.Numeric(10, 2), nullable=False),
        sa.Column('create_time', sa.DateTime, nullable=False),
        sa.Column('update_time', sa.DateTime, nullable=False)
    )
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('create_time', sa.DateTime, nullable=False)
    )
    op.create_index('ix_shops_owner_id', 'shops', ['owner_id'])
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('shop_id', sa.Integer, sa.ForeignKey('shops.id'), nullable=False),
        sa.Column('shop_name', sa.String(100), nullable=False),
        sa.Column('delivery_address', sa.JSON, nullable=False),
        sa.Column('delivery_type', sa.Integer, nullable=False),
        sa.Column('delivery_time', sa.DateTime, nullable=True),
        sa.Column('goods_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('delivery_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('coupon_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('remark', sa.Text, nullable=False),
        sa.Column('cancel_reason', sa.String(255), nullable=False),
        sa.Column('order_time', sa.DateTime, nullable=False),
        sa.Column('confirm_time', sa.DateTime, nullable=True),
        sa.Column('delivery_start_time', sa.DateTime, nullable=True),
        sa.Column('completed_time', sa.DateTime, nullable=True),
        sa.Column('cancelled_time', sa.DateTime, nullable=True),
        sa.Column('create_time', sa.DateTime, nullable=False),
        sa.Column('update_time', sa.DateTime, nullable=False)
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_shop_id', 'orders', ['shop_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_create_time', 'orders', ['create_time'])
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('goods_id', sa.String(64), nullable=False),
        sa.Column('goods_name', sa.String(200), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('specs', sa.String(200), nullable=False),
        sa.Column('image', sa.String(500), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False)
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('shops')
    op.drop_table('users')
