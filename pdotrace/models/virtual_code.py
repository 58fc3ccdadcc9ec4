from sqlalchemy import event, inspect

from ..extensions import db
from .mixins import TimestampMixin, enum_column
from .statuses import VirtualCodeStatus


class VirtualCode(TimestampMixin, db.Model):
    """
    One physical unit. Status and ownership fields are written only through the
    inventory ledger.
    """
    __tablename__ = 'virtual_code'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(12), nullable=False, unique=True)
    lot_id = db.Column(db.Integer, db.ForeignKey('lot.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=False)

    owner_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False)
    previous_owner_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=True)
    pending_to_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=True)
    status = enum_column(VirtualCodeStatus, nullable=False, default=VirtualCodeStatus.IN_STOCK)

    lot = db.relationship('Lot', back_populates='codes')
    product = db.relationship('Product')
    owner = db.relationship('Organization', foreign_keys=[owner_id])
    previous_owner = db.relationship('Organization', foreign_keys=[previous_owner_id])
    pending_to = db.relationship('Organization', foreign_keys=[pending_to_id])

    __table_args__ = (
        db.Index('idx_vc_owner_product_status', 'owner_id', 'product_id', 'status'),
        db.UniqueConstraint('lot_id', 'sequence_number', name='uq_vc_lot_sequence'),
        db.CheckConstraint(
            "(status = 'PENDING' AND pending_to_id IS NOT NULL) OR (status != 'PENDING' AND pending_to_id IS NULL)",
            name='check_vc_pending_destination',
        ),
    )

    def __repr__(self):
        return f'<VirtualCode {self.code} {self.status.value if self.status else None} owner={self.owner_id}>'


@event.listens_for(VirtualCode, "before_update")
def _code_value_is_immutable(mapper, connection, target):
    if inspect(target).attrs.code.history.has_changes():
        raise ValueError(f"Virtual code {target.id} value cannot change after creation")
