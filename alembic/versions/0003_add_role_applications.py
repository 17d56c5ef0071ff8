"""add delivery and receiver role applications

Revision ID: 0003_add_role_applications
Revises: 0002_add_payment_fields
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = '0003_add_role_applications'
down_revision = '0002_add_payment_fields'
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table('users') as batch_op:
        batch_op.add_column(sa.Column('is_delivery', sa.Boolean(), nullable=False, server_default=sa.false()))
        batch_op.add_column(sa.Column('is_receiver', sa.Boolean(), nullable=False, server_default=sa.false()))

    with op.batch_alter_table('orders') as batch_op:
        batch_op.add_column(sa.Column('delivery_user_id', sa.Integer(), nullable=True))
        batch_op.create_foreign_key('fk_orders_delivery_user_id', 'users', ['delivery_user_id'], ['id'])

    op.create_table(
        'role_applications',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('application_type', sa.String(20), nullable=False),
        sa.Column('real_name', sa.String(50), nullable=False),
        sa.Column('id_number', sa.String(18), nullable=False),
        sa.Column('student_number', sa.String(32), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('id_card_front_url', sa.String(500), nullable=False),
        sa.Column('id_card_back_url', sa.String(500), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('review_comment', sa.String(255), nullable=False),
        sa.Column('reviewed_by', sa.Integer, nullable=True),
        sa.Column('review_time', sa.DateTime, nullable=True),
        sa.Column('create_time', sa.DateTime, nullable=False),
        sa.Column('update_time', sa.DateTime, nullable=False)
    )
    op.create_index('ix_role_applications_user_id', 'role_applications', ['user_id'])
    op.create_index(
        'uq_role_applications_pending',
        'role_applications',
        ['user_id', 'application_type'],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index('uq_role_applications_pending', table_name='role_applications')
    op.drop_index('ix_role_applications_user_id', table_name='role_applications')
    op.drop_table('role_applications')
    with op.batch_alter_table('orders') as batch_op:
        batch_op.drop_constraint('fk_orders_delivery_user_id', type_='foreignkey')
        batch_op.drop_column('delivery_user_id')
    with op.batch_alter_table('users') as batch_op:
        batch_op.drop_column('is_receiver')
        batch_op.drop_column('is_delivery')
