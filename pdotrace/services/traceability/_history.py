"""Append-only audit trail writer and reader.

Synopsis:
``HistoryLogger.record`` adds one HistoryEntry to the current session; it
never commits. The surrounding coordinator commit makes the entry durable
together with the ledger mutation it describes, and a rollback discards both.

Glossary:
- Direction: IN (stock arrived), OUT (stock left), INTERNAL (consumed in place).
- Counterparty: the other organization in a transfer, if any.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from ...models import HistoryAction, HistoryDirection, HistoryEntry, db, history_codes
from ...utils.timezone_utils import TimezoneUtils

logger = logging.getLogger(__name__)


class HistoryLogger:
    def __init__(self, clock=None):
        self._clock = clock or TimezoneUtils.utc_now

    def record(
        self,
        *,
        organization_id: int,
        action: HistoryAction,
        direction: HistoryDirection,
        codes: Iterable,
        product_id: Optional[int] = None,
        counterparty_id: Optional[int] = None,
        lot_id: Optional[int] = None,
        shipment_id: Optional[int] = None,
        treatment_id: Optional[int] = None,
        return_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> HistoryEntry:
        codes = list(codes)
        entry = HistoryEntry(
            organization_id=organization_id,
            action=action,
            direction=direction,
            quantity=len(codes),
            timestamp=TimezoneUtils.to_utc(self._clock()),
            counterparty_id=counterparty_id,
            product_id=product_id,
            lot_id=lot_id,
            shipment_id=shipment_id,
            treatment_id=treatment_id,
            return_id=return_id,
            notes=notes,
        )
        entry.codes = codes
        db.session.add(entry)
        logger.debug(
            "History %s/%s org=%s product=%s qty=%s",
            action.value, direction.value, organization_id, product_id, entry.quantity,
        )
        return entry

    def record_per_product(self, codes: Iterable, **fields) -> List[HistoryEntry]:
        """One entry per product among ``codes``, in ascending product id order."""
        grouped = {}
        for code in codes:
            grouped.setdefault(code.product_id, []).append(code)
        return [
            self.record(product_id=product_id, codes=grouped[product_id], **fields)
            for product_id in sorted(grouped)
        ]


class HistoryService:
    """Read side of the audit trail."""

    @staticmethod
    def query(
        organization_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action: Optional[HistoryAction] = None,
        limit: Optional[int] = None,
    ) -> List[HistoryEntry]:
        """Entries for one organization in append order, optionally bounded by [start, end] and action."""
        query = HistoryEntry.query.filter(HistoryEntry.organization_id == organization_id)
        if start is not None:
            query = query.filter(HistoryEntry.timestamp >= TimezoneUtils.to_utc(start))
        if end is not None:
            query = query.filter(HistoryEntry.timestamp <= TimezoneUtils.to_utc(end))
        if action is not None:
            query = query.filter(HistoryEntry.action == HistoryAction(action))
        query = query.order_by(HistoryEntry.id.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def for_codes(code_ids: Iterable[int]) -> List[HistoryEntry]:
        """Every entry touching any of ``code_ids``, oldest first."""
        ids = list(code_ids)
        if not ids:
            return []
        return (
            HistoryEntry.query.join(history_codes, history_codes.c.history_entry_id == HistoryEntry.id)
            .filter(history_codes.c.virtual_code_id.in_(ids))
            .distinct()
            .order_by(HistoryEntry.id.asc())
            .all()
        )
