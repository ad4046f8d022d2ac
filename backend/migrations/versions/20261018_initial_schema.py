"""Initial schema: catalog, invoice intake, phone unit ledger, DSR schedules and assignments

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration creates:
1. users (owner / clerk / dsr identities)
2. products (catalog reference, optimistic version column)
3. purchase_invoices and phone_units (IMEI unique across the ledger)
4. dsr_schedules and dsr_shifts ((agent_id, schedule_date) unique)
5. dsr_assignments and dsr_assignment_units (one assignment per schedule)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def upgrade():
    # ==========================================================================
    # 1. USERS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=80), nullable=True),
        sa.Column('last_name', sa.String(length=80), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_role', ['role'], unique=False)
        batch_op.create_index('ix_users_role_active', ['role', 'is_active'], unique=False)

    # ==========================================================================
    # 2. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=False),
        sa.Column('variant', sa.String(length=128), nullable=True),
        sa.Column('storage', sa.String(length=32), nullable=False),
        sa.Column('ram', sa.String(length=32), nullable=False),
        sa.Column('color', sa.String(length=64), nullable=False),
        sa.Column('screen_size', sa.String(length=32), nullable=True),
        sa.Column('battery', sa.String(length=32), nullable=True),
        sa.Column('camera', sa.String(length=128), nullable=True),
        sa.Column('processor', sa.String(length=128), nullable=True),
        sa.Column('os', sa.String(length=64), nullable=True),
        sa.Column('sim_type', sa.String(length=32), nullable=True),
        sa.Column('connectivity', sa.JSON(), nullable=True),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False),
        sa.Column('selling_price_cents', sa.Integer(), nullable=False),
        sa.Column('mrp_cents', sa.Integer(), nullable=True),
        sa.Column('warranty_months', sa.Integer(), nullable=False, server_default='12'),
        sa.Column('warranty_type', sa.String(length=32), nullable=False, server_default='Manufacturer'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_discontinued', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_products_created_by_user_id_users'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_products_updated_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_brand', ['brand'], unique=False)
        batch_op.create_index('ix_products_model', ['model'], unique=False)
        batch_op.create_index('ix_products_brand_model_color', ['brand', 'model', 'color'], unique=False)
        batch_op.create_index('ix_products_active_discontinued', ['is_active', 'is_discontinued'], unique=False)

    # ==========================================================================
    # 3. PURCHASE INVOICES
    # ==========================================================================
    op.create_table('purchase_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('invoice_time', sa.String(length=5), nullable=True),
        sa.Column('supplier_name', sa.String(length=255), nullable=False),
        sa.Column('supplier_contact_person', sa.String(length=255), nullable=True),
        sa.Column('supplier_phone', sa.String(length=32), nullable=True),
        sa.Column('supplier_email', sa.String(length=255), nullable=True),
        sa.Column('supplier_address', sa.Text(), nullable=True),
        sa.Column('proof_key', sa.String(length=512), nullable=True),
        sa.Column('proof_url', sa.String(length=1024), nullable=True),
        sa.Column('proof_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shipping_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_selling_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='CASH'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='PAID'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_date', sa.Date(), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('verified_by_user_id', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_purchase_invoices_created_by_user_id_users'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_purchase_invoices_updated_by_user_id_users'),
        sa.ForeignKeyConstraint(['verified_by_user_id'], ['users.id'], name='fk_purchase_invoices_verified_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_purchase_invoices'),
        sa.UniqueConstraint('invoice_number', name='uq_purchase_invoices_invoice_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('purchase_invoices', schema=None) as batch_op:
        batch_op.create_index('ix_purchase_invoices_status', ['status'], unique=False)
        batch_op.create_index('ix_purchase_invoices_date', ['invoice_date'], unique=False)
        batch_op.create_index('ix_purchase_invoices_supplier', ['supplier_name'], unique=False)

    # ==========================================================================
    # 4. PHONE UNITS (ledger)
    # ==========================================================================
    op.create_table('phone_units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('imei', sa.String(length=15), nullable=False),
        sa.Column('serial_number', sa.String(length=64), nullable=True),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False),
        sa.Column('selling_price_cents', sa.Integer(), nullable=False),
        sa.Column('condition', sa.String(length=16), nullable=False, server_default='NEW'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('warranty_expiry_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('sold_price_cents', sa.Integer(), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_to', sa.String(length=255), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('return_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['invoice_id'], ['purchase_invoices.id'], name='fk_phone_units_invoice_id_purchase_invoices'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_phone_units_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_phone_units'),
        sa.UniqueConstraint('imei', name='uq_phone_units_imei'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('phone_units', schema=None) as batch_op:
        batch_op.create_index('ix_phone_units_invoice_id', ['invoice_id'], unique=False)
        batch_op.create_index('ix_phone_units_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_phone_units_status', ['status'], unique=False)
        batch_op.create_index('ix_phone_units_invoice_position', ['invoice_id', 'position'], unique=False)
        batch_op.create_index('ix_phone_units_product_status', ['product_id', 'status'], unique=False)

    # ==========================================================================
    # 5. DSR SCHEDULES + SHIFTS
    # ==========================================================================
    op.create_table('dsr_schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('schedule_date', sa.Date(), nullable=False),
        sa.Column('day_of_week', sa.String(length=9), nullable=False),
        sa.Column('iso_week', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('schedule_type', sa.String(length=16), nullable=False, server_default='WORKDAY'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='SCHEDULED'),
        sa.Column('assignment_id', sa.Integer(), nullable=True),
        sa.Column('check_in_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('check_out_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_work_minutes', sa.Integer(), nullable=True),
        sa.Column('is_late', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('late_by_minutes', sa.Integer(), nullable=True),
        sa.Column('leave_type', sa.String(length=16), nullable=True),
        sa.Column('leave_reason', sa.Text(), nullable=True),
        sa.Column('leave_requested_by_user_id', sa.Integer(), nullable=True),
        sa.Column('leave_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('leave_approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('leave_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('units_assigned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('units_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('units_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('profit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agent_id'], ['users.id'], name='fk_dsr_schedules_agent_id_users'),
        sa.ForeignKeyConstraint(['leave_requested_by_user_id'], ['users.id'], name='fk_dsr_schedules_leave_requested_by_user_id_users'),
        sa.ForeignKeyConstraint(['leave_approved_by_user_id'], ['users.id'], name='fk_dsr_schedules_leave_approved_by_user_id_users'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_dsr_schedules_created_by_user_id_users'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_dsr_schedules_updated_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_dsr_schedules'),
        sa.UniqueConstraint('agent_id', 'schedule_date', name='uq_dsr_schedules_agent_date'),
        sa.UniqueConstraint('assignment_id', name='uq_dsr_schedules_assignment_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('dsr_schedules', schema=None) as batch_op:
        batch_op.create_index('ix_dsr_schedules_agent_id', ['agent_id'], unique=False)
        batch_op.create_index('ix_dsr_schedules_date_type', ['schedule_date', 'schedule_type'], unique=False)
        batch_op.create_index('ix_dsr_schedules_agent_year_month', ['agent_id', 'year', 'month'], unique=False)
        batch_op.create_index('ix_dsr_schedules_status_date', ['status', 'schedule_date'], unique=False)

    op.create_table('dsr_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
        sa.Column('shift_name', sa.String(length=64), nullable=True),
        sa.Column('break_start', sa.String(length=5), nullable=True),
        sa.Column('break_end', sa.String(length=5), nullable=True),
        sa.ForeignKeyConstraint(['schedule_id'], ['dsr_schedules.id'], name='fk_dsr_shifts_schedule_id_dsr_schedules'),
        sa.PrimaryKeyConstraint('id', name='pk_dsr_shifts'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('dsr_shifts', schema=None) as batch_op:
        batch_op.create_index('ix_dsr_shifts_schedule', ['schedule_id'], unique=False)

    # ==========================================================================
    # 6. DSR ASSIGNMENTS + LINES
    # ==========================================================================
    op.create_table('dsr_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assignment_number', sa.String(length=32), nullable=False),
        sa.Column('assignment_date', sa.Date(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=24), nullable=False, server_default='ACTIVE'),
        sa.Column('total_units', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_target_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sold_units', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sold_revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned_units', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('profit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_by_user_id', sa.Integer(), nullable=True),
        sa.Column('return_notes', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('assigned_by_user_id', sa.Integer(), nullable=False),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['agent_id'], ['users.id'], name='fk_dsr_assignments_agent_id_users'),
        sa.ForeignKeyConstraint(['schedule_id'], ['dsr_schedules.id'], name='fk_dsr_assignments_schedule_id_dsr_schedules'),
        sa.ForeignKeyConstraint(['returned_by_user_id'], ['users.id'], name='fk_dsr_assignments_returned_by_user_id_users'),
        sa.ForeignKeyConstraint(['assigned_by_user_id'], ['users.id'], name='fk_dsr_assignments_assigned_by_user_id_users'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_dsr_assignments_updated_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_dsr_assignments'),
        sa.UniqueConstraint('assignment_number', name='uq_dsr_assignments_assignment_number'),
        sa.UniqueConstraint('schedule_id', name='uq_dsr_assignments_schedule_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('dsr_assignments', schema=None) as batch_op:
        batch_op.create_index('ix_dsr_assignments_agent_id', ['agent_id'], unique=False)
        batch_op.create_index('ix_dsr_assignments_status', ['status'], unique=False)
        batch_op.create_index('ix_dsr_assignments_date_agent', ['assignment_date', 'agent_id'], unique=False)
        batch_op.create_index('ix_dsr_assignments_status_date', ['status', 'assignment_date'], unique=False)

    op.create_table('dsr_assignment_units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assignment_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('imei', sa.String(length=15), nullable=False),
        sa.Column('assigned_price_cents', sa.Integer(), nullable=False),
        sa.Column('target_price_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ASSIGNED'),
        sa.Column('sold_price_cents', sa.Integer(), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('return_notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['assignment_id'], ['dsr_assignments.id'], name='fk_dsr_assignment_units_assignment_id_dsr_assignments'),
        sa.ForeignKeyConstraint(['invoice_id'], ['purchase_invoices.id'], name='fk_dsr_assignment_units_invoice_id_purchase_invoices'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_dsr_assignment_units_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_dsr_assignment_units'),
        sa.UniqueConstraint('assignment_id', 'imei', name='uq_dsr_assignment_units_imei'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('dsr_assignment_units', schema=None) as batch_op:
        batch_op.create_index('ix_dsr_assignment_units_assignment_id', ['assignment_id'], unique=False)
        batch_op.create_index('ix_dsr_assignment_units_imei', ['imei'], unique=False)


def downgrade():
    op.drop_table('dsr_assignment_units')
    op.drop_table('dsr_assignments')
    op.drop_table('dsr_shifts')
    op.drop_table('dsr_schedules')
    op.drop_table('phone_units')
    op.drop_table('purchase_invoices')
    op.drop_table('products')
    op.drop_table('users')
