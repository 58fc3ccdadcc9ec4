"""Models package - imports all models for the application"""
from ..extensions import db
from .mixins import ScopedModelMixin, TimestampMixin

# Import in dependency order for PostgreSQL table creation
from .organization import Organization, ManufacturerSettings
from .product import Product
from .lot import Lot
from .virtual_code import VirtualCode
from .shipment import ShipmentTransaction, ShipmentLine, shipment_codes
from .treatment import TreatmentRecord, treatment_codes
from .return_request import ReturnRequest, return_codes
from .history import HistoryEntry, history_codes
from .statuses import (
    HistoryAction,
    HistoryDirection,
    OrganizationRole,
    OrganizationStatus,
    ProductStatus,
    ReturnStatus,
    ShipmentStatus,
    TreatmentStatus,
    VirtualCodeStatus,
)

__all__ = [
    'db',
    'ScopedModelMixin',
    'TimestampMixin',
    'Organization',
    'ManufacturerSettings',
    'Product',
    'Lot',
    'VirtualCode',
    'ShipmentTransaction',
    'ShipmentLine',
    'TreatmentRecord',
    'ReturnRequest',
    'HistoryEntry',
    'shipment_codes',
    'treatment_codes',
    'return_codes',
    'history_codes',
    'HistoryAction',
    'HistoryDirection',
    'OrganizationRole',
    'OrganizationStatus',
    'ProductStatus',
    'ReturnStatus',
    'ShipmentStatus',
    'TreatmentStatus',
    'VirtualCodeStatus',
]
