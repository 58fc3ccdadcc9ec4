from ..extensions import db
from .mixins import TimestampMixin, enum_column
from .statuses import ShipmentStatus

shipment_codes = db.Table(
    'shipment_code',
    db.Column('shipment_id', db.Integer, db.ForeignKey('shipment_transaction.id'), primary_key=True),
    db.Column('virtual_code_id', db.Integer, db.ForeignKey('virtual_code.id'), primary_key=True),
)


class ShipmentTransaction(TimestampMixin, db.Model):
    """Transfer of allocated units from sender to receiver. Terminal once accepted or rejected."""
    __tablename__ = 'shipment_transaction'

    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)
    status = enum_column(ShipmentStatus, nullable=False, default=ShipmentStatus.PENDING)

    sender = db.relationship('Organization', foreign_keys=[sender_id])
    receiver = db.relationship('Organization', foreign_keys=[receiver_id])
    lines = db.relationship(
        'ShipmentLine', back_populates='shipment', order_by='ShipmentLine.position', cascade='all, delete-orphan'
    )
    codes = db.relationship('VirtualCode', secondary=shipment_codes, order_by='VirtualCode.id')

    @property
    def code_ids(self):
        return [code.id for code in self.codes]

    @property
    def total_quantity(self):
        return sum(line.quantity for line in self.lines)

    def __repr__(self):
        return f'<ShipmentTransaction {self.id} {self.sender_id}->{self.receiver_id} {self.status.value}>'


class ShipmentLine(db.Model):
    __tablename__ = 'shipment_line'

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment_transaction.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    shipment = db.relationship('ShipmentTransaction', back_populates='lines')
    product = db.relationship('Product')

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_shipment_line_quantity_positive'),
    )
