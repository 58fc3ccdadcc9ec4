from sqlalchemy import event, inspect, select

from ..extensions import db
from .mixins import ScopedModelMixin, TimestampMixin, enum_column
from .statuses import ProductStatus


class Product(ScopedModelMixin, TimestampMixin, db.Model):
    """A catalogue product; ``organization_id`` is the owning manufacturer."""
    __tablename__ = 'product'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(20), nullable=False, unique=True)
    status = enum_column(ProductStatus, nullable=False, default=ProductStatus.ACTIVE)

    manufacturer = db.relationship('Organization', foreign_keys='Product.organization_id')

    @property
    def is_active(self):
        return self.status == ProductStatus.ACTIVE

    def __repr__(self):
        return f'<Product {self.code}>'


_FROZEN_PRODUCT_FIELDS = ('name', 'code', 'organization_id')


@event.listens_for(Product, "before_update")
def _freeze_referenced_product(mapper, connection, target):
    """Only status may change once a lot references the product."""
    from .lot import Lot

    state = inspect(target)
    changed = [name for name in _FROZEN_PRODUCT_FIELDS if state.attrs[name].history.has_changes()]
    if not changed:
        return
    referenced = connection.execute(
        select(Lot.id).where(Lot.product_id == target.id).limit(1)
    ).first()
    if referenced is not None:
        raise ValueError(f"Product {target.id} is referenced by a lot; {', '.join(changed)} cannot change")
