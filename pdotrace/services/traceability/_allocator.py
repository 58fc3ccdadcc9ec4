import logging
from datetime import date
from typing import List, Optional

from ...errors import InsufficientStock
from ...models import Lot, VirtualCode, VirtualCodeStatus
from ...rules import TraceabilityRules
from ...utils.error_messages import ErrorMessages as EM
from ._ledger import fifo_ordering

logger = logging.getLogger(__name__)


class FifoAllocator:
    """Pick the oldest eligible IN_STOCK codes for an owner/product. Never mutates."""

    def __init__(self, rules: TraceabilityRules):
        self.rules = rules

    def _eligible(self, owner_id: int, product_id: int, today: Optional[date]):
        query = (
            VirtualCode.query.join(Lot, VirtualCode.lot_id == Lot.id)
            .filter(
                VirtualCode.owner_id == owner_id,
                VirtualCode.product_id == product_id,
                VirtualCode.status == VirtualCodeStatus.IN_STOCK,
            )
        )
        if self.rules.block_expired and today is not None:
            query = query.filter(Lot.expiry_date >= today)
        return query

    def available(self, owner_id: int, product_id: int, today: Optional[date] = None) -> int:
        return self._eligible(owner_id, product_id, today).count()

    def allocate(
        self,
        owner_id: int,
        product_id: int,
        quantity: int,
        today: Optional[date] = None,
        for_update: bool = False,
    ) -> List[VirtualCode]:
        """
        Return exactly ``quantity`` codes in FIFO order or raise InsufficientStock.

        ``today`` is the business-timezone date used for expiry blocking.
        ``for_update`` row-locks the picked codes on backends that support it.
        """
        query = self._eligible(owner_id, product_id, today).order_by(*fifo_ordering()).limit(quantity)
        if for_update:
            query = query.with_for_update(of=VirtualCode)
        query = query.populate_existing()
        codes = query.all()

        if len(codes) < quantity:
            available = len(codes)
            logger.info(
                "FIFO short: owner=%s product=%s requested=%s available=%s",
                owner_id, product_id, quantity, available,
            )
            raise InsufficientStock(
                EM.INSUFFICIENT_STOCK.format(product_id=product_id, requested=quantity, available=available),
                details={"product_id": product_id, "requested": quantity, "available": available},
            )
        return codes
