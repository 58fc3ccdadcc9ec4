from sqlalchemy import event

from ..errors import ImmutableHistoryError
from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .mixins import ScopedModelMixin, enum_column
from .statuses import HistoryAction, HistoryDirection

history_codes = db.Table(
    'history_entry_code',
    db.Column('history_entry_id', db.Integer, db.ForeignKey('history_entry.id'), primary_key=True),
    db.Column('virtual_code_id', db.Integer, db.ForeignKey('virtual_code.id'), primary_key=True),
)


class HistoryEntry(ScopedModelMixin, db.Model):
    """Append-only audit row describing one ledger mutation from one organization's point of view."""
    __tablename__ = 'history_entry'

    id = db.Column(db.Integer, primary_key=True)
    action = enum_column(HistoryAction, nullable=False, index=True)
    direction = enum_column(HistoryDirection, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    timestamp = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False, index=True)

    # Entity references
    counterparty_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    lot_id = db.Column(db.Integer, db.ForeignKey('lot.id'), nullable=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment_transaction.id'), nullable=True)
    treatment_id = db.Column(db.Integer, db.ForeignKey('treatment_record.id'), nullable=True)
    return_id = db.Column(db.Integer, db.ForeignKey('return_request.id'), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    organization = db.relationship('Organization', foreign_keys='HistoryEntry.organization_id')
    counterparty = db.relationship('Organization', foreign_keys=[counterparty_id])
    codes = db.relationship('VirtualCode', secondary=history_codes, order_by='VirtualCode.id')

    __table_args__ = (
        db.Index('idx_history_org_timestamp', 'organization_id', 'timestamp'),
        db.CheckConstraint('quantity > 0', name='check_history_quantity_positive'),
    )

    @property
    def code_ids(self):
        return [code.id for code in self.codes]

    def __repr__(self):
        return f'<HistoryEntry {self.id} org={self.organization_id} {self.action.value} {self.direction.value} x{self.quantity}>'


@event.listens_for(HistoryEntry, "before_update")
def _history_is_append_only(mapper, connection, target):
    raise ImmutableHistoryError(f"History entry {target.id} cannot be updated")


@event.listens_for(HistoryEntry, "before_delete")
def _history_is_never_deleted(mapper, connection, target):
    raise ImmutableHistoryError(f"History entry {target.id} cannot be deleted")
