from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class TimestampMixin:
    """Adds created_at and updated_at timestamps to models"""
    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=TimezoneUtils.utc_now, onupdate=TimezoneUtils.utc_now, nullable=False
    )


class ScopedModelMixin:
    """Rows that belong to a single organization."""
    organization_id = db.Column(db.Integer, db.ForeignKey('organization.id'), nullable=False, index=True)

    @classmethod
    def for_organization(cls, org_id):
        return cls.query.filter_by(organization_id=org_id)


def enum_column(enum_cls, **kwargs):
    """String-backed enum column; portable across SQLite and PostgreSQL."""
    return db.Column(
        db.Enum(enum_cls, native_enum=False, length=24, validate_strings=True),
        **kwargs,
    )
