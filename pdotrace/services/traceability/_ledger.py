"""Inventory ledger.

Synopsis:
Authoritative owner/status view of every virtual code. Reads are open to
anyone; ``set_status`` is the only writer of VirtualCode status and
ownership columns and is called by the transaction coordinator.

Glossary:
- Owner update: new owner / previous owner / pending destination written
  alongside a status change.
- FIFO key: (lot manufacture date, lot expiry date, sequence number,
  created_at, id), all ascending.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func

from ...errors import IllegalTransition, NotFound
from ...models import Lot, VirtualCode, VirtualCodeStatus, db
from ...utils.error_messages import ErrorMessages as EM

logger = logging.getLogger(__name__)

S = VirtualCodeStatus

ALLOWED_TRANSITIONS: Dict[VirtualCodeStatus, frozenset] = {
    S.PENDING: frozenset({S.IN_STOCK}),
    S.IN_STOCK: frozenset({S.PENDING, S.USED, S.DISPOSED}),
    S.USED: frozenset({S.RECALLED}),
    S.RETURNED: frozenset(),
    S.DISPOSED: frozenset(),
    S.RECALLED: frozenset(),
}


def can_transition(current: VirtualCodeStatus, target: VirtualCodeStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class OwnerUpdate:
    """Ownership fields written together with a status change. ``None`` leaves a field as is."""
    owner_id: Optional[int] = None
    previous_owner_id: Optional[int] = None
    pending_to_id: Optional[int] = None


def fifo_ordering():
    return (
        Lot.manufacture_date.asc(),
        Lot.expiry_date.asc(),
        VirtualCode.sequence_number.asc(),
        VirtualCode.created_at.asc(),
        VirtualCode.id.asc(),
    )


class InventoryLedger:
    # ---------- reads ----------

    @staticmethod
    def _scoped(owner_id: int, product_id: Optional[int] = None, status: Optional[VirtualCodeStatus] = None):
        query = VirtualCode.query.filter(VirtualCode.owner_id == owner_id)
        if product_id is not None:
            query = query.filter(VirtualCode.product_id == product_id)
        if status is not None:
            query = query.filter(VirtualCode.status == VirtualCodeStatus(status))
        return query

    def count_by_status(self, owner_id: int, product_id: Optional[int], status: VirtualCodeStatus) -> int:
        return self._scoped(owner_id, product_id, status).count()

    def list_codes(
        self, owner_id: int, product_id: Optional[int] = None, status: Optional[VirtualCodeStatus] = None
    ) -> List[VirtualCode]:
        """Codes for an owner in FIFO order."""
        return self._scoped(owner_id, product_id, status).join(Lot, VirtualCode.lot_id == Lot.id).order_by(
            *fifo_ordering()
        ).all()

    def summary(self, owner_id: int) -> Dict[int, Dict[str, int]]:
        """``{product_id: {status: count}}`` for everything an organization holds."""
        rows = (
            db.session.query(VirtualCode.product_id, VirtualCode.status, func.count(VirtualCode.id))
            .filter(VirtualCode.owner_id == owner_id)
            .group_by(VirtualCode.product_id, VirtualCode.status)
            .all()
        )
        result: Dict[int, Dict[str, int]] = {}
        for product_id, status, count in rows:
            result.setdefault(product_id, {})[VirtualCodeStatus(status).value] = count
        return result

    def get_codes(self, code_ids: Iterable[int], for_update: bool = False) -> List[VirtualCode]:
        """Load codes by id (ascending); every id must exist."""
        ids = sorted(set(code_ids))
        query = VirtualCode.query.filter(VirtualCode.id.in_(ids)).order_by(VirtualCode.id.asc())
        if for_update:
            query = query.with_for_update().populate_existing()
        codes = query.all()
        if len(codes) != len(ids):
            missing = sorted(set(ids) - {code.id for code in codes})
            raise NotFound(
                EM.ENTITY_NOT_FOUND.format(entity="VirtualCode", entity_id=missing[0]),
                details={"missing": missing},
            )
        return codes

    # ---------- write ----------

    def set_status(
        self,
        codes: Iterable[VirtualCode],
        new_status: VirtualCodeStatus,
        owner_update: Optional[OwnerUpdate] = None,
    ) -> List[VirtualCode]:
        """
        Move every code to ``new_status``; the whole batch is checked before any row changes.

        Leaving PENDING clears the pending destination. Entering PENDING
        requires one.
        """
        codes = list(codes)
        update = owner_update or OwnerUpdate()
        for code in codes:
            if not can_transition(code.status, new_status):
                raise IllegalTransition(
                    EM.ILLEGAL_TRANSITION.format(code=code.code, current=code.status.value, target=new_status.value),
                    details={"code_id": code.id, "current": code.status.value, "target": new_status.value},
                )
        if new_status == S.PENDING and update.pending_to_id is None:
            raise ValueError("Entering PENDING requires a pending destination")

        for code in codes:
            code.status = new_status
            if update.owner_id is not None:
                code.owner_id = update.owner_id
            if update.previous_owner_id is not None:
                code.previous_owner_id = update.previous_owner_id
            code.pending_to_id = update.pending_to_id if new_status == S.PENDING else None

        logger.debug("Ledger: %s code(s) -> %s", len(codes), new_status.value)
        return codes
