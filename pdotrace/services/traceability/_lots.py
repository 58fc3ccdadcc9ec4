"""Lot registry.

Synopsis:
Validates a production request, reserves the next per-day lot sequence under
the LOT_PRODUCTION lock keyed (manufacturer, manufacture date), writes the
lot, its virtual codes and a LOT_PRODUCTION history entry, and commits while
the lock is still held.

Glossary:
- Sequence: 1-based production counter per manufacturer per calendar day.
- Lot number: ``PREFIX-YYYYMMDD-SEQ`` with SEQ zero-padded to three digits.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ...errors import InvalidExpiry, InvalidLotFormat, SequenceConflict, Unauthorized, ValidationError
from ...models import (
    HistoryAction,
    HistoryDirection,
    Lot,
    OrganizationRole,
    db,
)
from ...rules import TraceabilityRules
from ...utils.error_messages import ErrorMessages as EM
from ...utils.timezone_utils import TimezoneUtils
from ._codes import VirtualCodeGenerator
from ._history import HistoryLogger
from ._locks import LockDomain, LockManager
from ._results import ProductLine
from ._validation import load_active_organization, load_products

logger = logging.getLogger(__name__)


def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def format_lot_number(prefix: str, manufacture_date: date, sequence: int) -> str:
    return f"{prefix}-{manufacture_date:%Y%m%d}-{sequence:03d}"


class LotRegistry:
    def __init__(self, rules: TraceabilityRules, locks: LockManager, history: HistoryLogger, clock=None):
        self.rules = rules
        self.locks = locks
        self.history = history
        self.generator = VirtualCodeGenerator(rules)
        self._clock = clock or TimezoneUtils.utc_now

    # ---------- validation ----------

    def _check_quantity(self, quantity) -> int:
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            quantity = None
        if quantity is None or not (self.rules.min_quantity <= quantity <= self.rules.max_lot_quantity):
            raise ValidationError(
                EM.LOT_QUANTITY_RANGE.format(minimum=self.rules.min_quantity, maximum=self.rules.max_lot_quantity)
            )
        return quantity

    def resolve_expiry(self, manufacturer, manufacture_date: date, expiry_date: Optional[date]) -> date:
        """Apply the manufacturer's default shelf life when no expiry is given, then enforce the bounds."""
        if expiry_date is None:
            months = self.rules.default_expiry_months
            if manufacturer.settings is not None and manufacturer.settings.default_expiry_months:
                months = manufacturer.settings.default_expiry_months
            expiry_date = add_months(manufacture_date, months)

        earliest = manufacture_date + timedelta(days=self.rules.min_expiry_days)
        latest = add_months(manufacture_date, 12 * self.rules.max_expiry_years)
        if expiry_date < earliest:
            raise InvalidExpiry(EM.EXPIRY_TOO_SOON.format(expiry=expiry_date, earliest=earliest))
        if expiry_date > latest:
            raise InvalidExpiry(EM.EXPIRY_TOO_LATE.format(expiry=expiry_date, latest=latest))
        return expiry_date

    def lot_prefix(self, manufacturer) -> str:
        if manufacturer.settings is not None and manufacturer.settings.lot_prefix:
            return manufacturer.settings.lot_prefix
        return self.rules.default_lot_prefix

    def _next_sequence(self, manufacturer_id: int, manufacture_date: date) -> int:
        current = (
            db.session.query(func.max(Lot.sequence))
            .filter(Lot.organization_id == manufacturer_id, Lot.manufacture_date == manufacture_date)
            .scalar()
        )
        return (current or 0) + 1

    # ---------- production ----------

    def create_lot(
        self,
        product_id: int,
        manufacturer_id: int,
        quantity: int,
        manufacture_date: Optional[date] = None,
        expiry_date: Optional[date] = None,
    ) -> Lot:
        quantity = self._check_quantity(quantity)
        manufacturer = load_active_organization(manufacturer_id, {OrganizationRole.MANUFACTURER})
        product = load_products([ProductLine(product_id, quantity)])[product_id]
        if product.organization_id != manufacturer.id:
            raise Unauthorized(EM.PRODUCT_NOT_OWNED.format(product_id=product_id, org_id=manufacturer.id))
        if not product.is_active:
            raise ValidationError(EM.PRODUCT_INACTIVE.format(product_id=product_id))

        if manufacture_date is None:
            manufacture_date = TimezoneUtils.business_date(self._clock(), self.rules.business_timezone)
        expiry_date = self.resolve_expiry(manufacturer, manufacture_date, expiry_date)
        prefix = self.lot_prefix(manufacturer)

        attempts = max(1, self.rules.sequence_retries)
        lock_keys = [(manufacturer_id, manufacture_date.toordinal())]
        for attempt in range(1, attempts + 1):
            # Transaction-scoped locks end with the rollback; each attempt takes the lock again.
            with self.locks.hold(LockDomain.LOT_PRODUCTION, lock_keys):
                sequence = self._next_sequence(manufacturer_id, manufacture_date)
                lot_number = format_lot_number(prefix, manufacture_date, sequence)
                if not self.rules.lot_number_regex.match(lot_number):
                    raise InvalidLotFormat(EM.LOT_NUMBER_INVALID.format(lot_number=lot_number))

                try:
                    lot = self._write_lot(
                        product_id, manufacturer_id, quantity, manufacture_date, expiry_date, sequence, lot_number
                    )
                    db.session.commit()
                except IntegrityError:
                    db.session.rollback()
                    logger.warning(
                        "Lot sequence collision for manufacturer %s on %s (attempt %s/%s)",
                        manufacturer_id, manufacture_date, attempt, attempts,
                    )
                    continue

            logger.info("Produced lot %s (%s units) for manufacturer %s", lot.lot_number, quantity, manufacturer_id)
            return lot

        raise SequenceConflict(
            EM.SEQUENCE_CONFLICT.format(org_id=manufacturer_id, day=manufacture_date, attempts=attempts),
            details={"manufacturer_id": manufacturer_id, "manufacture_date": manufacture_date.isoformat()},
        )

    def _write_lot(self, product_id, manufacturer_id, quantity, manufacture_date, expiry_date, sequence, lot_number):
        lot = Lot(
            organization_id=manufacturer_id,
            product_id=product_id,
            lot_number=lot_number,
            sequence=sequence,
            quantity=quantity,
            manufacture_date=manufacture_date,
            expiry_date=expiry_date,
            created_at=TimezoneUtils.to_utc(self._clock()),
        )
        db.session.add(lot)
        db.session.flush()

        codes = self.generator.generate(lot, quantity)
        db.session.add_all(codes)
        db.session.flush()

        self.history.record(
            organization_id=manufacturer_id,
            action=HistoryAction.LOT_PRODUCTION,
            direction=HistoryDirection.IN,
            codes=codes,
            product_id=product_id,
            lot_id=lot.id,
        )
        return lot
