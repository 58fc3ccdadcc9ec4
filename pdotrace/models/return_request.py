from ..extensions import db
from .mixins import TimestampMixin, enum_column
from .statuses import ReturnStatus

return_codes = db.Table(
    'return_code',
    db.Column('return_id', db.Integer, db.ForeignKey('return_request.id'), primary_key=True),
    db.Column('virtual_code_id', db.Integer, db.ForeignKey('virtual_code.id'), primary_key=True),
)


class ReturnRequest(TimestampMixin, db.Model):
    __tablename__ = 'return_request'

    id = db.Column(db.Integer, primary_key=True)
    requester_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)
    target_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)
    reason = db.Column(db.String(500), nullable=False)
    status = enum_column(ReturnStatus, nullable=False, default=ReturnStatus.PENDING)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    requester = db.relationship('Organization', foreign_keys=[requester_id])
    target = db.relationship('Organization', foreign_keys=[target_id])
    codes = db.relationship('VirtualCode', secondary=return_codes, order_by='VirtualCode.id')

    @property
    def code_ids(self):
        return [code.id for code in self.codes]

    def __repr__(self):
        return f'<ReturnRequest {self.id} {self.requester_id}->{self.target_id} {self.status.value}>'
