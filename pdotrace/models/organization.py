from ..extensions import db
from .mixins import TimestampMixin, enum_column
from .statuses import OrganizationRole, OrganizationStatus


class Organization(TimestampMixin, db.Model):
    """A party in the supply chain. Onboarding happens elsewhere; the engine only reads role and status."""
    __tablename__ = 'organization'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    role = enum_column(OrganizationRole, nullable=False, index=True)
    status = enum_column(OrganizationStatus, nullable=False, default=OrganizationStatus.ACTIVE)

    settings = db.relationship('ManufacturerSettings', back_populates='organization', uselist=False)

    @property
    def is_active(self):
        return self.status == OrganizationStatus.ACTIVE

    def __repr__(self):
        return f'<Organization {self.id} {self.role.value if self.role else None}: {self.name}>'


class ManufacturerSettings(db.Model):
    """Per-manufacturer lot numbering and expiry defaults."""
    __tablename__ = 'manufacturer_settings'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, unique=True)
    lot_prefix = db.Column(db.String(8), nullable=False, default='ND')
    default_expiry_months = db.Column(db.Integer, nullable=False, default=24)

    organization = db.relationship('Organization', back_populates='settings')

    __table_args__ = (
        db.CheckConstraint('default_expiry_months > 0', name='check_default_expiry_months_positive'),
    )

    def __repr__(self):
        return f'<ManufacturerSettings org={self.organization_id} prefix={self.lot_prefix}>'
