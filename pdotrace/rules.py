"""Immutable business rules for the traceability engine.

Synopsis:
Builds a frozen ``TraceabilityRules`` from the Flask config once at startup.
The coordinator and its collaborators receive it explicitly so tests and
deployments can tune thresholds without touching module globals.

Glossary:
- Route: an ordered (sender role, receiver role) pair allowed to move stock.
- Lock class: timeout budget for one advisory lock domain.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Tuple

from .config import _FALSE_VALUES, _TRUE_VALUES
from .models.statuses import OrganizationRole

Route = Tuple[OrganizationRole, OrganizationRole]

VIRTUAL_CODE_LENGTH = 12
VIRTUAL_CODE_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
VIRTUAL_CODE_PATTERN = re.compile(r"^[A-Z0-9]{12}$")
PRODUCT_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6,20}$")

SHIPMENT_ROUTES: FrozenSet[Route] = frozenset({
    (OrganizationRole.MANUFACTURER, OrganizationRole.DISTRIBUTOR),
    (OrganizationRole.DISTRIBUTOR, OrganizationRole.HOSPITAL),
    (OrganizationRole.DISTRIBUTOR, OrganizationRole.DISTRIBUTOR),
})

RETURN_ROUTES: FrozenSet[Route] = frozenset({
    (OrganizationRole.DISTRIBUTOR, OrganizationRole.MANUFACTURER),
    (OrganizationRole.HOSPITAL, OrganizationRole.DISTRIBUTOR),
})


@dataclass(frozen=True)
class LockSettings:
    backend: str = "auto"
    default_timeout: float = 5.0
    shipment_timeout: float = 10.0
    lot_production_timeout: float = 5.0
    quick_timeout: float = 2.0
    poll_interval: float = 0.05
    retry_attempts: int = 3
    retry_delay: float = 1.0
    retry_backoff: bool = True


@dataclass(frozen=True)
class TraceabilityRules:
    business_timezone: str = "Asia/Seoul"

    recall_window_hours: int = 24
    recall_roles: FrozenSet[OrganizationRole] = frozenset({OrganizationRole.HOSPITAL})
    disposal_roles: FrozenSet[OrganizationRole] = frozenset({OrganizationRole.HOSPITAL})
    treatment_roles: FrozenSet[OrganizationRole] = frozenset({OrganizationRole.HOSPITAL})

    min_quantity: int = 1
    max_shipment_quantity: int = 100000
    max_treatment_quantity: int = 100
    max_lot_quantity: int = 1000000

    return_reason_min: int = 5
    return_reason_max: int = 500

    min_expiry_days: int = 30
    max_expiry_years: int = 5
    default_expiry_months: int = 24
    default_lot_prefix: str = "ND"
    lot_number_pattern: str = r"^[A-Z]{2}-\d{8}-\d{3}$"
    block_expired: bool = True
    sequence_retries: int = 3

    code_salt: str = "pdotrace"
    code_max_attempts: int = 10

    shipment_routes: FrozenSet[Route] = SHIPMENT_ROUTES
    return_routes: FrozenSet[Route] = RETURN_ROUTES

    locks: LockSettings = field(default_factory=LockSettings)

    @property
    def lot_number_regex(self):
        return re.compile(self.lot_number_pattern)

    def allows_shipment(self, sender_role: OrganizationRole, receiver_role: OrganizationRole) -> bool:
        return (sender_role, receiver_role) in self.shipment_routes

    def allows_return(self, requester_role: OrganizationRole, target_role: OrganizationRole) -> bool:
        return (requester_role, target_role) in self.return_routes

    @classmethod
    def from_config(cls, config: Mapping) -> "TraceabilityRules":
        """Build rules from a Flask config mapping, falling back to the defaults above."""
        defaults = cls()
        lock_defaults = LockSettings()

        def _get(key, default):
            value = config.get(key)
            return default if value is None else value

        def _flag(key, default):
            value = _get(key, default)
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_VALUES:
                    return True
                if lowered in _FALSE_VALUES:
                    return False
                return default
            return bool(value)

        locks = LockSettings(
            backend=str(_get("TRACE_LOCK_BACKEND", lock_defaults.backend)).lower(),
            default_timeout=float(_get("TRACE_LOCK_TIMEOUT_DEFAULT", lock_defaults.default_timeout)),
            shipment_timeout=float(_get("TRACE_LOCK_TIMEOUT_SHIPMENT", lock_defaults.shipment_timeout)),
            lot_production_timeout=float(
                _get("TRACE_LOCK_TIMEOUT_LOT_PRODUCTION", lock_defaults.lot_production_timeout)
            ),
            quick_timeout=float(_get("TRACE_LOCK_TIMEOUT_QUICK", lock_defaults.quick_timeout)),
            poll_interval=float(_get("TRACE_LOCK_POLL_INTERVAL", lock_defaults.poll_interval)),
            retry_attempts=int(_get("TRACE_LOCK_RETRY_ATTEMPTS", lock_defaults.retry_attempts)),
            retry_delay=float(_get("TRACE_LOCK_RETRY_DELAY", lock_defaults.retry_delay)),
            retry_backoff=_flag("TRACE_LOCK_RETRY_BACKOFF", lock_defaults.retry_backoff),
        )

        rules = cls(
            business_timezone=_get("TRACE_BUSINESS_TIMEZONE", defaults.business_timezone),
            recall_window_hours=int(_get("TRACE_RECALL_WINDOW_HOURS", defaults.recall_window_hours)),
            max_shipment_quantity=int(_get("TRACE_MAX_SHIPMENT_QUANTITY", defaults.max_shipment_quantity)),
            max_treatment_quantity=int(_get("TRACE_MAX_TREATMENT_QUANTITY", defaults.max_treatment_quantity)),
            max_lot_quantity=int(_get("TRACE_MAX_LOT_QUANTITY", defaults.max_lot_quantity)),
            return_reason_min=int(_get("TRACE_RETURN_REASON_MIN", defaults.return_reason_min)),
            return_reason_max=int(_get("TRACE_RETURN_REASON_MAX", defaults.return_reason_max)),
            min_expiry_days=int(_get("TRACE_MIN_EXPIRY_DAYS", defaults.min_expiry_days)),
            max_expiry_years=int(_get("TRACE_MAX_EXPIRY_YEARS", defaults.max_expiry_years)),
            default_expiry_months=int(_get("TRACE_DEFAULT_EXPIRY_MONTHS", defaults.default_expiry_months)),
            default_lot_prefix=_get("TRACE_DEFAULT_LOT_PREFIX", defaults.default_lot_prefix),
            lot_number_pattern=_get("TRACE_LOT_NUMBER_PATTERN", defaults.lot_number_pattern),
            block_expired=_flag("TRACE_BLOCK_EXPIRED", defaults.block_expired),
            sequence_retries=int(_get("TRACE_SEQUENCE_RETRIES", defaults.sequence_retries)),
            code_salt=_get("TRACE_CODE_SALT", defaults.code_salt),
            code_max_attempts=int(_get("TRACE_CODE_MAX_ATTEMPTS", defaults.code_max_attempts)),
            locks=locks,
        )
        re.compile(rules.lot_number_pattern)
        return rules
