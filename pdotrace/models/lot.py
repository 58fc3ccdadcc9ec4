from sqlalchemy import event

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .mixins import ScopedModelMixin


class Lot(ScopedModelMixin, db.Model):
    """
    A production batch of one product. ``organization_id`` is the producing manufacturer.
    Lots are written once at production time and never updated.
    """
    __tablename__ = 'lot'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False, index=True)
    lot_number = db.Column(db.String(20), nullable=False)
    sequence = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    manufacture_date = db.Column(db.Date, nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)

    product = db.relationship('Product')
    manufacturer = db.relationship('Organization', foreign_keys='Lot.organization_id')
    codes = db.relationship('VirtualCode', back_populates='lot', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('organization_id', 'lot_number', name='uq_lot_number_per_manufacturer'),
        db.UniqueConstraint('organization_id', 'manufacture_date', 'sequence', name='uq_lot_sequence_per_day'),
        db.CheckConstraint('quantity > 0', name='check_lot_quantity_positive'),
        db.CheckConstraint('sequence > 0', name='check_lot_sequence_positive'),
        db.CheckConstraint('expiry_date > manufacture_date', name='check_lot_expiry_after_manufacture'),
    )

    def is_expired(self, today):
        return self.expiry_date < today

    def days_until_expiration(self, today):
        """Days until expiry (negative if already expired)"""
        return (self.expiry_date - today).days

    def __repr__(self):
        return f'<Lot {self.lot_number} x{self.quantity}>'


@event.listens_for(Lot, "before_update")
def _lots_are_write_once(mapper, connection, target):
    raise ValueError(f"Lot {target.lot_number} is immutable once produced")
