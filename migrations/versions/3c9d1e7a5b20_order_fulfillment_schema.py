"""order fulfillment schema

Revision ID: 3c9d1e7a5b20
Revises:
Create Date: 2026-10-17 09:12:41.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9d1e7a5b20'
down_revision = None
branch_labels = None
depends_on = None


def _order_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reference', sa.String(length=40), nullable=False),
        sa.Column('total_minor', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('service_fee_minor', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=24), nullable=False, server_default='Pending'),
        sa.Column('order_status', sa.String(length=32), nullable=False, server_default='Processing'),
        sa.Column('shipping_address_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('mpesa_phone', sa.String(length=32), nullable=True),
        sa.Column('checkout_request_id', sa.String(length=96), nullable=True),
        sa.Column('merchant_request_id', sa.String(length=96), nullable=True),
        sa.Column('mpesa_receipt_number', sa.String(length=64), nullable=True),
        sa.Column('mpesa_transaction_date', sa.DateTime(), nullable=True),
        sa.Column('mpesa_phone_number', sa.String(length=32), nullable=True),
        sa.Column('payment_failure_reason', sa.String(length=240), nullable=True),
        sa.Column('task_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _task_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reference', sa.String(length=40), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='Awaiting Acceptance'),
        sa.Column('pickup_code', sa.String(length=16), nullable=False, unique=True),
        sa.Column('delivery_address_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('delivery_fee_minor', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _order_indexes(table):
    op.create_index(f'ix_{table}_reference', table, ['reference'], unique=True)
    op.create_index(f'ix_{table}_checkout_request_id', table, ['checkout_request_id'], unique=True)
    op.create_index(f'ix_{table}_payment_status', table, ['payment_status'])
    op.create_index(f'ix_{table}_order_status', table, ['order_status'])
    op.create_index(f'ix_{table}_task_id', table, ['task_id'])


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=120), nullable=False, server_default=''),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('phone', sa.String(length=32), nullable=True),
            sa.Column('password_hash', sa.String(length=255), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('role', sa.String(length=32), nullable=False, server_default='buyer'),
            sa.Column('status', sa.String(length=24), nullable=False, server_default='active'),
            sa.Column('business_name', sa.String(length=160), nullable=True),
            sa.Column('farm_name', sa.String(length=160), nullable=True),
            sa.Column('address', sa.String(length=255), nullable=True),
        )
        op.create_index('ix_users_email', 'users', ['email'], unique=True)
        op.create_index('ix_users_phone', 'users', ['phone'], unique=True)
        op.create_index('ix_users_role', 'users', ['role'])

    if 'products' not in tables:
        op.create_table(
            'products',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('name', sa.String(length=160), nullable=False),
            sa.Column('price', sa.Float(), nullable=False, server_default='0'),
            sa.Column('image_path', sa.String(length=1024), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_products_vendor_id', 'products', ['vendor_id'])

    if 'bulk_products' not in tables:
        op.create_table(
            'bulk_products',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('owner_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('name', sa.String(length=160), nullable=False),
            sa.Column('price', sa.Float(), nullable=False, server_default='0'),
            sa.Column('unit', sa.String(length=32), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_bulk_products_owner_id', 'bulk_products', ['owner_id'])

    if 'orders' not in tables:
        op.create_table(
            'orders',
            *_order_columns(),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        )
        _order_indexes('orders')
        op.create_index('ix_orders_user_id', 'orders', ['user_id'])

    if 'order_items' not in tables:
        op.create_table(
            'order_items',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
            sa.Column('product_id', sa.Integer(), nullable=False),
            sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('name', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('image_path', sa.String(length=1024), nullable=True),
            sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('unit_price_minor', sa.Integer(), nullable=False, server_default='0'),
        )
        op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
        op.create_index('ix_order_items_vendor_id', 'order_items', ['vendor_id'])

    if 'bulk_orders' not in tables:
        op.create_table(
            'bulk_orders',
            *_order_columns(),
            sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('farmer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        )
        _order_indexes('bulk_orders')
        op.create_index('ix_bulk_orders_vendor_id', 'bulk_orders', ['vendor_id'])
        op.create_index('ix_bulk_orders_farmer_id', 'bulk_orders', ['farmer_id'])

    if 'bulk_order_items' not in tables:
        op.create_table(
            'bulk_order_items',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('bulk_order_id', sa.Integer(), sa.ForeignKey('bulk_orders.id'), nullable=False),
            sa.Column('product_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('unit_price_minor', sa.Integer(), nullable=False, server_default='0'),
        )
        op.create_index('ix_bulk_order_items_bulk_order_id', 'bulk_order_items', ['bulk_order_id'])

    if 'delivery_tasks' not in tables:
        op.create_table(
            'delivery_tasks',
            *_task_columns(),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False, unique=True),
            sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('rider_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('buyer_confirmation_code', sa.String(length=16), nullable=False),
        )
        op.create_index('ix_delivery_tasks_reference', 'delivery_tasks', ['reference'], unique=True)
        op.create_index('ix_delivery_tasks_status', 'delivery_tasks', ['status'])
        op.create_index('ix_delivery_tasks_vendor_status', 'delivery_tasks', ['vendor_id', 'status'])
        op.create_index('ix_delivery_tasks_rider_status', 'delivery_tasks', ['rider_id', 'status'])

    if 'bulk_delivery_tasks' not in tables:
        op.create_table(
            'bulk_delivery_tasks',
            *_task_columns(),
            sa.Column('bulk_order_id', sa.Integer(), sa.ForeignKey('bulk_orders.id'), nullable=False, unique=True),
            sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('driver_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('vendor_confirmation_code', sa.String(length=16), nullable=False),
        )
        op.create_index('ix_bulk_delivery_tasks_reference', 'bulk_delivery_tasks', ['reference'], unique=True)
        op.create_index('ix_bulk_delivery_tasks_status', 'bulk_delivery_tasks', ['status'])
        op.create_index('ix_bulk_delivery_tasks_seller_status', 'bulk_delivery_tasks', ['seller_id', 'status'])
        op.create_index('ix_bulk_delivery_tasks_driver_status', 'bulk_delivery_tasks', ['driver_id', 'status'])

    if 'notifications' not in tables:
        op.create_table(
            'notifications',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('kind', sa.String(length=32), nullable=False, server_default='order'),
            sa.Column('title', sa.String(length=160), nullable=False, server_default='Order Alert'),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('related_type', sa.String(length=32), nullable=True),
            sa.Column('related_id', sa.String(length=64), nullable=True),
            sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('dedupe_key', sa.String(length=160), nullable=True, unique=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    if 'webhook_events' not in tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('provider', sa.String(length=32), nullable=False, server_default='mpesa'),
            sa.Column('event_id', sa.String(length=128), nullable=False),
            sa.Column('order_kind', sa.String(length=16), nullable=True),
            sa.Column('order_reference', sa.String(length=40), nullable=True),
            sa.Column('result_code', sa.Integer(), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=False, server_default='received'),
            sa.Column('processed_at', sa.DateTime(), nullable=True),
            sa.Column('claimed_at', sa.DateTime(), nullable=True),
            sa.Column('request_id', sa.String(length=64), nullable=True),
            sa.Column('payload_hash', sa.String(length=128), nullable=True),
            sa.Column('payload_json', sa.Text(), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_event_provider_event'),
        )
        op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'])

    if 'escrow_transitions' not in tables:
        op.create_table(
            'escrow_transitions',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('escrow_id', sa.String(length=64), nullable=False),
            sa.Column('order_kind', sa.String(length=16), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('from_status', sa.String(length=32), nullable=False, server_default=''),
            sa.Column('to_status', sa.String(length=32), nullable=False),
            sa.Column('amount_minor', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('actor_type', sa.String(length=32), nullable=False, server_default='system'),
            sa.Column('actor_id', sa.Integer(), nullable=True),
            sa.Column('idempotency_key', sa.String(length=160), nullable=False),
            sa.Column('reason', sa.String(length=240), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('order_kind', 'order_id', 'idempotency_key', name='uq_escrow_transition_order_key'),
        )
        op.create_index('ix_escrow_transitions_escrow_id', 'escrow_transitions', ['escrow_id'])
        op.create_index('ix_escrow_transitions_order_id', 'escrow_transitions', ['order_id'])

    if 'order_events' not in tables:
        op.create_table(
            'order_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('order_kind', sa.String(length=16), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('actor_user_id', sa.Integer(), nullable=True),
            sa.Column('event', sa.String(length=64), nullable=False),
            sa.Column('note', sa.String(length=240), nullable=True),
            sa.Column('idempotency_key', sa.String(length=160), nullable=False, unique=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_order_events_order_id', 'order_events', ['order_id'])

    if 'idempotency_keys' not in tables:
        op.create_table(
            'idempotency_keys',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('key', sa.String(length=128), nullable=False),
            sa.Column('scope', sa.String(length=128), nullable=False, server_default=''),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('request_hash', sa.String(length=64), nullable=False, server_default=''),
            sa.Column('response_body_json', sa.Text(), nullable=True),
            sa.Column('response_code', sa.Integer(), nullable=False, server_default='200'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('scope', 'key', name='uq_idempotency_scope_key'),
        )
        op.create_index('ix_idempotency_keys_key', 'idempotency_keys', ['key'])


def downgrade():
    for table in (
        'idempotency_keys',
        'order_events',
        'escrow_transitions',
        'webhook_events',
        'notifications',
        'bulk_delivery_tasks',
        'delivery_tasks',
        'bulk_order_items',
        'bulk_orders',
        'order_items',
        'orders',
        'bulk_products',
        'products',
        'users',
    ):
        op.drop_table(table)
