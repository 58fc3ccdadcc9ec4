"""initial traceability schema

Revision ID: 0001_initial
Revises:
Create Date: 2025-03-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values):
    return sa.Enum(*values, native_enum=False, length=24)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _link_table(name, parent_column, parent_table):
    op.create_table(
        name,
        sa.Column(parent_column, sa.Integer(), sa.ForeignKey(f'{parent_table}.id'), primary_key=True),
        sa.Column('virtual_code_id', sa.Integer(), sa.ForeignKey('virtual_code.id'), primary_key=True),
    )


def upgrade():
    op.create_table(
        'organization',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('role', _enum('MANUFACTURER', 'DISTRIBUTOR', 'HOSPITAL', 'ADMIN'), nullable=False),
        sa.Column('status', _enum('PENDING', 'ACTIVE', 'INACTIVE', 'REJECTED'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_organization_role', 'organization', ['role'])

    op.create_table(
        'manufacturer_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False, unique=True),
        sa.Column('lot_prefix', sa.String(length=8), nullable=False),
        sa.Column('default_expiry_months', sa.Integer(), nullable=False),
        sa.CheckConstraint('default_expiry_months > 0', name='check_default_expiry_months_positive'),
    )

    op.create_table(
        'product',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False, unique=True),
        sa.Column('status', _enum('ACTIVE', 'INACTIVE'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_product_organization_id', 'product', ['organization_id'])

    op.create_table(
        'lot',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=False),
        sa.Column('lot_number', sa.String(length=20), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('manufacture_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('organization_id', 'lot_number', name='uq_lot_number_per_manufacturer'),
        sa.UniqueConstraint('organization_id', 'manufacture_date', 'sequence', name='uq_lot_sequence_per_day'),
        sa.CheckConstraint('quantity > 0', name='check_lot_quantity_positive'),
        sa.CheckConstraint('sequence > 0', name='check_lot_sequence_positive'),
        sa.CheckConstraint('expiry_date > manufacture_date', name='check_lot_expiry_after_manufacture'),
    )
    op.create_index('ix_lot_organization_id', 'lot', ['organization_id'])
    op.create_index('ix_lot_product_id', 'lot', ['product_id'])

    op.create_table(
        'virtual_code',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=12), nullable=False, unique=True),
        sa.Column('lot_id', sa.Integer(), sa.ForeignKey('lot.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('previous_owner_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=True),
        sa.Column('pending_to_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=True),
        sa.Column(
            'status', _enum('PENDING', 'IN_STOCK', 'USED', 'RETURNED', 'DISPOSED', 'RECALLED'), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint('lot_id', 'sequence_number', name='uq_vc_lot_sequence'),
        sa.CheckConstraint(
            "(status = 'PENDING' AND pending_to_id IS NOT NULL) OR (status != 'PENDING' AND pending_to_id IS NULL)",
            name='check_vc_pending_destination',
        ),
    )
    op.create_index('ix_virtual_code_lot_id', 'virtual_code', ['lot_id'])
    op.create_index('idx_vc_owner_product_status', 'virtual_code', ['owner_id', 'product_id', 'status'])

    op.create_table(
        'shipment_transaction',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('receiver_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('status', _enum('PENDING', 'COMPLETED', 'REJECTED'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_shipment_transaction_sender_id', 'shipment_transaction', ['sender_id'])
    op.create_index('ix_shipment_transaction_receiver_id', 'shipment_transaction', ['receiver_id'])

    op.create_table(
        'shipment_line',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shipment_id', sa.Integer(), sa.ForeignKey('shipment_transaction.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='check_shipment_line_quantity_positive'),
    )
    op.create_index('ix_shipment_line_shipment_id', 'shipment_line', ['shipment_id'])
    _link_table('shipment_code', 'shipment_id', 'shipment_transaction')

    op.create_table(
        'treatment_record',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('patient_phone_hash', sa.String(length=64), nullable=False),
        sa.Column('treatment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', _enum('COMPLETED', 'RECALLED'), nullable=False),
        sa.Column('recall_reason', sa.String(length=500), nullable=True),
        sa.Column('recalled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_treatment_record_organization_id', 'treatment_record', ['organization_id'])
    op.create_index('ix_treatment_record_patient_phone_hash', 'treatment_record', ['patient_phone_hash'])
    _link_table('treatment_code', 'treatment_id', 'treatment_record')

    op.create_table(
        'return_request',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('requester_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('status', _enum('PENDING', 'APPROVED', 'REJECTED'), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_return_request_requester_id', 'return_request', ['requester_id'])
    op.create_index('ix_return_request_target_id', 'return_request', ['target_id'])
    _link_table('return_code', 'return_id', 'return_request')

    op.create_table(
        'history_entry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=False),
        sa.Column(
            'action',
            _enum(
                'LOT_PRODUCTION', 'SHIPMENT_OUT', 'SHIPMENT_IN', 'TREATMENT', 'RECALL',
                'RETURN_OUT', 'RETURN_IN', 'DISPOSAL', 'REJECTION',
            ),
            nullable=False,
        ),
        sa.Column('direction', _enum('IN', 'OUT', 'INTERNAL'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('counterparty_id', sa.Integer(), sa.ForeignKey('organization.id'), nullable=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=True),
        sa.Column('lot_id', sa.Integer(), sa.ForeignKey('lot.id'), nullable=True),
        sa.Column('shipment_id', sa.Integer(), sa.ForeignKey('shipment_transaction.id'), nullable=True),
        sa.Column('treatment_id', sa.Integer(), sa.ForeignKey('treatment_record.id'), nullable=True),
        sa.Column('return_id', sa.Integer(), sa.ForeignKey('return_request.id'), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.CheckConstraint('quantity > 0', name='check_history_quantity_positive'),
    )
    op.create_index('ix_history_entry_organization_id', 'history_entry', ['organization_id'])
    op.create_index('ix_history_entry_action', 'history_entry', ['action'])
    op.create_index('ix_history_entry_timestamp', 'history_entry', ['timestamp'])
    op.create_index('idx_history_org_timestamp', 'history_entry', ['organization_id', 'timestamp'])
    _link_table('history_entry_code', 'history_entry_id', 'history_entry')


def downgrade():
    for table in (
        'history_entry_code',
        'history_entry',
        'return_code',
        'return_request',
        'treatment_code',
        'treatment_record',
        'shipment_code',
        'shipment_line',
        'shipment_transaction',
        'virtual_code',
        'lot',
        'product',
        'manufacturer_settings',
        'organization',
    ):
        op.drop_table(table)
