from ..extensions import db
from .mixins import ScopedModelMixin, TimestampMixin, enum_column
from .statuses import TreatmentStatus

treatment_codes = db.Table(
    'treatment_code',
    db.Column('treatment_id', db.Integer, db.ForeignKey('treatment_record.id'), primary_key=True),
    db.Column('virtual_code_id', db.Integer, db.ForeignKey('virtual_code.id'), primary_key=True),
)


class TreatmentRecord(ScopedModelMixin, TimestampMixin, db.Model):
    """Units consumed on a patient. ``organization_id`` is the treating hospital."""
    __tablename__ = 'treatment_record'

    id = db.Column(db.Integer, primary_key=True)
    patient_phone_hash = db.Column(db.String(64), nullable=False, index=True)
    treatment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = enum_column(TreatmentStatus, nullable=False, default=TreatmentStatus.COMPLETED)
    recall_reason = db.Column(db.String(500), nullable=True)
    recalled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    hospital = db.relationship('Organization', foreign_keys='TreatmentRecord.organization_id')
    codes = db.relationship('VirtualCode', secondary=treatment_codes, order_by='VirtualCode.id')

    @property
    def code_ids(self):
        return [code.id for code in self.codes]

    def __repr__(self):
        return f'<TreatmentRecord {self.id} hospital={self.organization_id} {self.status.value}>'
