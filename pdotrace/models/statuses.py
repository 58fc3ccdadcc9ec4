"""Closed status, role and action vocabularies.

Synopsis:
Every status-like column in the traceability schema is one of these enums.
Values equal names so rows stay readable in raw SQL.

Glossary:
- Direction: whether a history row moved stock into, out of, or within an organization.
"""

import enum


class OrganizationRole(str, enum.Enum):
    MANUFACTURER = "MANUFACTURER"
    DISTRIBUTOR = "DISTRIBUTOR"
    HOSPITAL = "HOSPITAL"
    ADMIN = "ADMIN"


class OrganizationStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    REJECTED = "REJECTED"


class ProductStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class VirtualCodeStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_STOCK = "IN_STOCK"
    USED = "USED"
    RETURNED = "RETURNED"
    DISPOSED = "DISPOSED"
    RECALLED = "RECALLED"


class ShipmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class TreatmentStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    RECALLED = "RECALLED"


class ReturnStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class HistoryAction(str, enum.Enum):
    LOT_PRODUCTION = "LOT_PRODUCTION"
    SHIPMENT_OUT = "SHIPMENT_OUT"
    SHIPMENT_IN = "SHIPMENT_IN"
    TREATMENT = "TREATMENT"
    RECALL = "RECALL"
    RETURN_OUT = "RETURN_OUT"
    RETURN_IN = "RETURN_IN"
    DISPOSAL = "DISPOSAL"
    REJECTION = "REJECTION"


class HistoryDirection(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    INTERNAL = "INTERNAL"
