"""Transaction coordinator.

Synopsis:
Every multi-step inventory operation runs here as one atomic unit:
validate -> acquire advisory locks -> allocate / load -> ledger mutation ->
history append -> commit -> release locks. Domain failures roll the session
back and come back as a failed ``OperationResult``; nothing partial is ever
committed and no history row survives a failed call.

Glossary:
- Claim: (lock domain, keys) pair held for the duration of an operation.
- Line: (product, quantity) requested by a shipment, treatment or return.
- Actor: organization performing an accept/reject/resolve, when known.
"""

from __future__ import annotations

import contextlib
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ...errors import AlreadyResolved, NotFound, TraceabilityError, Unauthorized, ValidationError
from ...models import (
    HistoryAction,
    HistoryDirection,
    OrganizationRole,
    ProductStatus,
    ReturnRequest,
    ReturnStatus,
    ShipmentLine,
    ShipmentStatus,
    ShipmentTransaction,
    TreatmentRecord,
    TreatmentStatus,
    VirtualCode,
    VirtualCodeStatus,
    db,
)
from ...rules import TraceabilityRules
from ...utils.error_messages import ErrorMessages as EM
from ...utils.timezone_utils import TimezoneUtils
from ._allocator import FifoAllocator
from ._history import HistoryLogger
from ._ledger import InventoryLedger, OwnerUpdate
from ._locks import LockDomain, LockManager
from ._lots import LotRegistry
from ._recall import RecallEligibilityChecker
from ._results import OperationResult, ProductLine
from ._validation import (
    load_active_organization,
    load_products,
    normalize_lines,
    total_quantity,
    validate_code_ids,
    validate_reason,
)

logger = logging.getLogger(__name__)

Claim = Tuple[LockDomain, Sequence[tuple]]


def _group_by_product(codes: Iterable[VirtualCode]) -> Dict[int, List[VirtualCode]]:
    grouped: Dict[int, List[VirtualCode]] = {}
    for code in codes:
        grouped.setdefault(code.product_id, []).append(code)
    return grouped


class TransactionCoordinator:
    def __init__(self, rules: TraceabilityRules, locks: LockManager, clock=None):
        self.rules = rules
        self.locks = locks
        self._clock = clock or TimezoneUtils.utc_now
        self.ledger = InventoryLedger()
        self.allocator = FifoAllocator(rules)
        self.history = HistoryLogger(self._clock)
        self.lots = LotRegistry(rules, locks, self.history, self._clock)
        self.recall_checker = RecallEligibilityChecker(rules, self._clock)

    # ---------- plumbing ----------

    def now(self) -> datetime:
        return TimezoneUtils.to_utc(self._clock())

    def today(self) -> date:
        return TimezoneUtils.business_date(self.now(), self.rules.business_timezone)

    def _execute(self, operation: str, fn, *args, **kwargs) -> OperationResult:
        try:
            data = fn(*args, **kwargs)
        except TraceabilityError as exc:
            db.session.rollback()
            logger.warning("%s failed: %s - %s", operation, exc.code, exc.message)
            return OperationResult.failed(exc)
        except Exception:
            db.session.rollback()
            logger.exception("%s failed unexpectedly", operation)
            raise
        return OperationResult.ok(data)

    @contextlib.contextmanager
    def _critical_section(self, *claims: Claim, timeout: Optional[float] = None):
        """Hold every claim (domains in ascending order), commit on success, roll back on error."""
        with contextlib.ExitStack() as stack:
            for domain, keys in sorted(claims, key=lambda claim: int(claim[0])):
                stack.enter_context(self.locks.hold(domain, keys, timeout))
            try:
                yield
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

    @staticmethod
    def _get_or_404(model, entity_id):
        instance = db.session.get(model, entity_id)
        if instance is None:
            raise NotFound(EM.ENTITY_NOT_FOUND.format(entity=model.__name__, entity_id=entity_id))
        return instance

    @staticmethod
    def _require_pending(entity, pending_value):
        if entity.status != pending_value:
            raise AlreadyResolved(
                EM.ALREADY_RESOLVED.format(
                    entity=type(entity).__name__, entity_id=entity.id, status=entity.status.value
                ),
                details={"status": entity.status.value},
            )

    @staticmethod
    def _require_actor(actor_id: Optional[int], expected_id: int, entity) -> None:
        if actor_id is not None and actor_id != expected_id:
            raise Unauthorized(
                EM.NOT_RECEIVER.format(org_id=actor_id, entity=type(entity).__name__, entity_id=entity.id)
            )

    def _allocate_lines(self, owner_id: int, lines: List[ProductLine]) -> List[List[VirtualCode]]:
        today = self.today()
        return [
            self.allocator.allocate(owner_id, line.product_id, line.quantity, today=today, for_update=True)
            for line in lines
        ]

    # ---------- lot production ----------

    def produce_lot(
        self,
        manufacturer_id: int,
        product_id: int,
        quantity: int,
        manufacture_date: Optional[date] = None,
        expiry_date: Optional[date] = None,
    ) -> OperationResult:
        return self._execute(
            "produce_lot", self.lots.create_lot, product_id, manufacturer_id, quantity, manufacture_date, expiry_date
        )

    def set_product_status(self, manufacturer_id: int, product_id: int, status) -> OperationResult:
        """Toggle a product ACTIVE/INACTIVE; only its owning manufacturer may do so."""
        return self._execute("set_product_status", self._set_product_status, manufacturer_id, product_id, status)

    def _set_product_status(self, manufacturer_id, product_id, status):
        try:
            status = ProductStatus(status)
        except ValueError:
            raise ValidationError(EM.PRODUCT_STATUS_INVALID.format(status=status)) from None
        manufacturer = load_active_organization(manufacturer_id, {OrganizationRole.MANUFACTURER})
        product = load_products([ProductLine(product_id, 1)])[product_id]
        if product.organization_id != manufacturer.id:
            raise Unauthorized(EM.PRODUCT_NOT_OWNED.format(product_id=product_id, org_id=manufacturer.id))
        product.status = status
        db.session.commit()
        logger.info("Product %s set to %s by manufacturer %s", product_id, status.value, manufacturer_id)
        return product

    # ---------- shipments ----------

    def create_shipment(self, sender_id: int, receiver_id: int, lines) -> OperationResult:
        return self._execute("create_shipment", self._create_shipment, sender_id, receiver_id, lines)

    def _create_shipment(self, sender_id, receiver_id, lines):
        lines = normalize_lines(lines, min_quantity=self.rules.min_quantity)
        quantity = total_quantity(lines)
        if quantity > self.rules.max_shipment_quantity:
            raise ValidationError(
                EM.SHIPMENT_QUANTITY_EXCEEDED.format(quantity=quantity, maximum=self.rules.max_shipment_quantity)
            )
        if sender_id == receiver_id:
            raise ValidationError(EM.SAME_PARTY)

        sender = load_active_organization(sender_id)
        receiver = load_active_organization(receiver_id)
        if not self.rules.allows_shipment(sender.role, receiver.role):
            raise Unauthorized(
                EM.SHIPMENT_ROUTE_DENIED.format(sender=sender.role.value, receiver=receiver.role.value)
            )
        load_products(lines)

        # The sender's pool is also drawn from by return requests, so both domains are claimed.
        keys = [(sender_id, line.product_id) for line in lines]
        with self._critical_section(
            (LockDomain.SHIPMENT_TRANSACTION, keys),
            (LockDomain.VIRTUAL_CODE_ALLOCATION, keys),
        ):
            allocations = self._allocate_lines(sender_id, lines)
            shipment = ShipmentTransaction(sender_id=sender_id, receiver_id=receiver_id, status=ShipmentStatus.PENDING)
            for position, (line, codes) in enumerate(zip(lines, allocations), start=1):
                shipment.lines.append(
                    ShipmentLine(position=position, product_id=line.product_id, quantity=line.quantity)
                )
                self.ledger.set_status(codes, VirtualCodeStatus.PENDING, OwnerUpdate(pending_to_id=receiver_id))
            shipment.codes = [code for codes in allocations for code in codes]
            db.session.add(shipment)
            db.session.flush()

            for line, codes in zip(lines, allocations):
                self.history.record(
                    organization_id=sender_id,
                    action=HistoryAction.SHIPMENT_OUT,
                    direction=HistoryDirection.OUT,
                    codes=codes,
                    product_id=line.product_id,
                    counterparty_id=receiver_id,
                    shipment_id=shipment.id,
                )

        logger.info("Shipment %s created: %s -> %s, %s unit(s)", shipment.id, sender_id, receiver_id, quantity)
        return shipment

    def accept_shipment(self, shipment_id: int, actor: Optional[int] = None) -> OperationResult:
        return self._execute("accept_shipment", self._resolve_shipment, shipment_id, True, actor)

    def reject_shipment(self, shipment_id: int, actor: Optional[int] = None) -> OperationResult:
        return self._execute("reject_shipment", self._resolve_shipment, shipment_id, False, actor)

    def _resolve_shipment(self, shipment_id, accept, actor):
        shipment = self._get_or_404(ShipmentTransaction, shipment_id)
        self._require_actor(actor, shipment.receiver_id, shipment)
        self._require_pending(shipment, ShipmentStatus.PENDING)
        if accept:
            load_active_organization(shipment.receiver_id)

        sender_id, receiver_id = shipment.sender_id, shipment.receiver_id
        keys = [(sender_id, line.product_id) for line in shipment.lines]
        with self._critical_section((LockDomain.SHIPMENT_TRANSACTION, keys)):
            db.session.refresh(shipment)
            self._require_pending(shipment, ShipmentStatus.PENDING)

            codes = self.ledger.get_codes(shipment.code_ids, for_update=True)
            if accept:
                update = OwnerUpdate(owner_id=receiver_id, previous_owner_id=sender_id)
                shipment.status = ShipmentStatus.COMPLETED
                entry_org, counterparty = receiver_id, sender_id
            else:
                update = OwnerUpdate(owner_id=sender_id, previous_owner_id=receiver_id)
                shipment.status = ShipmentStatus.REJECTED
                entry_org, counterparty = sender_id, receiver_id
            self.ledger.set_status(codes, VirtualCodeStatus.IN_STOCK, update)

            grouped = _group_by_product(codes)
            for line in shipment.lines:
                self.history.record(
                    organization_id=entry_org,
                    action=HistoryAction.SHIPMENT_IN,
                    direction=HistoryDirection.IN,
                    codes=grouped.get(line.product_id, []),
                    product_id=line.product_id,
                    counterparty_id=counterparty,
                    shipment_id=shipment.id,
                    notes=None if accept else "Rejected by receiver",
                )

        logger.info("Shipment %s %s", shipment_id, "accepted" if accept else "rejected")
        return shipment

    # ---------- treatment & recall ----------

    def register_treatment(
        self,
        hospital_id: int,
        patient_phone_hash: str,
        lines,
        treatment_date: Optional[datetime] = None,
    ) -> OperationResult:
        return self._execute(
            "register_treatment", self._register_treatment, hospital_id, patient_phone_hash, lines, treatment_date
        )

    def _register_treatment(self, hospital_id, patient_phone_hash, lines, treatment_date):
        lines = normalize_lines(lines, min_quantity=self.rules.min_quantity)
        quantity = total_quantity(lines)
        if quantity > self.rules.max_treatment_quantity:
            raise ValidationError(
                EM.TREATMENT_QUANTITY_EXCEEDED.format(quantity=quantity, maximum=self.rules.max_treatment_quantity)
            )
        if not (patient_phone_hash or "").strip():
            raise ValidationError(EM.PATIENT_REQUIRED)

        now = self.now()
        treatment_date = TimezoneUtils.to_utc(treatment_date) if treatment_date else now
        if treatment_date > now:
            raise ValidationError(EM.TREATMENT_DATE_FUTURE)

        load_active_organization(hospital_id, self.rules.treatment_roles)
        load_products(lines)

        keys = [(hospital_id, line.product_id) for line in lines]
        with self._critical_section((LockDomain.VIRTUAL_CODE_ALLOCATION, keys)):
            allocations = self._allocate_lines(hospital_id, lines)
            for codes in allocations:
                self.ledger.set_status(codes, VirtualCodeStatus.USED)

            record = TreatmentRecord(
                organization_id=hospital_id,
                patient_phone_hash=patient_phone_hash.strip(),
                treatment_date=treatment_date,
                status=TreatmentStatus.COMPLETED,
            )
            record.codes = [code for codes in allocations for code in codes]
            db.session.add(record)
            db.session.flush()

            for line, codes in zip(lines, allocations):
                self.history.record(
                    organization_id=hospital_id,
                    action=HistoryAction.TREATMENT,
                    direction=HistoryDirection.INTERNAL,
                    codes=codes,
                    product_id=line.product_id,
                    treatment_id=record.id,
                )

        logger.info("Treatment %s registered at hospital %s, %s unit(s)", record.id, hospital_id, quantity)
        return record

    def recall(self, hospital_id: int, treatment_id: int, reason: Optional[str] = None) -> OperationResult:
        return self._execute("recall", self._recall, hospital_id, treatment_id, reason)

    def _recall(self, hospital_id, treatment_id, reason):
        reason = (reason or "").strip() or None
        if reason and len(reason) > self.rules.return_reason_max:
            raise ValidationError(EM.RECALL_REASON_TOO_LONG.format(maximum=self.rules.return_reason_max))

        hospital = load_active_organization(hospital_id)
        treatment = self._get_or_404(TreatmentRecord, treatment_id)
        self.recall_checker.check(hospital, treatment)

        keys = [(hospital_id, product_id) for product_id in sorted({code.product_id for code in treatment.codes})]
        with self._critical_section((LockDomain.VIRTUAL_CODE_ALLOCATION, keys)):
            db.session.refresh(treatment)
            codes = self.ledger.get_codes(treatment.code_ids, for_update=True)
            self.recall_checker.check(hospital, treatment)

            self.ledger.set_status(codes, VirtualCodeStatus.RECALLED)
            treatment.status = TreatmentStatus.RECALLED
            treatment.recall_reason = reason
            treatment.recalled_at = self.now()

            self.history.record_per_product(
                codes,
                organization_id=hospital_id,
                action=HistoryAction.RECALL,
                direction=HistoryDirection.INTERNAL,
                treatment_id=treatment.id,
                notes=reason,
            )

        logger.info("Treatment %s recalled by hospital %s", treatment_id, hospital_id)
        return treatment

    def recall_eligibility(self, hospital_id: int, treatment_id: int) -> OperationResult:
        def _eligibility():
            hospital = load_active_organization(hospital_id)
            treatment = self._get_or_404(TreatmentRecord, treatment_id)
            return self.recall_checker.eligibility(hospital, treatment)

        return self._execute("recall_eligibility", _eligibility)

    # ---------- returns ----------

    def request_return(self, requester_id: int, target_id: int, lines, reason: str) -> OperationResult:
        return self._execute("request_return", self._request_return, requester_id, target_id, lines, reason)

    def _request_return(self, requester_id, target_id, lines, reason):
        reason = validate_reason(reason, self.rules.return_reason_min, self.rules.return_reason_max)
        lines = normalize_lines(lines, min_quantity=self.rules.min_quantity)
        quantity = total_quantity(lines)
        if quantity > self.rules.max_shipment_quantity:
            raise ValidationError(
                EM.SHIPMENT_QUANTITY_EXCEEDED.format(quantity=quantity, maximum=self.rules.max_shipment_quantity)
            )
        if requester_id == target_id:
            raise ValidationError(EM.SAME_PARTY)

        requester = load_active_organization(requester_id)
        target = load_active_organization(target_id)
        if not self.rules.allows_return(requester.role, target.role):
            raise Unauthorized(
                EM.RETURN_ROUTE_DENIED.format(requester=requester.role.value, target=target.role.value)
            )
        load_products(lines)

        keys = [(requester_id, line.product_id) for line in lines]
        with self._critical_section((LockDomain.VIRTUAL_CODE_ALLOCATION, keys)):
            allocations = self._allocate_lines(requester_id, lines)
            for codes in allocations:
                self.ledger.set_status(codes, VirtualCodeStatus.PENDING, OwnerUpdate(pending_to_id=target_id))

            request = ReturnRequest(
                requester_id=requester_id, target_id=target_id, reason=reason, status=ReturnStatus.PENDING
            )
            request.codes = [code for codes in allocations for code in codes]
            db.session.add(request)
            db.session.flush()

            for line, codes in zip(lines, allocations):
                self.history.record(
                    organization_id=requester_id,
                    action=HistoryAction.RETURN_OUT,
                    direction=HistoryDirection.OUT,
                    codes=codes,
                    product_id=line.product_id,
                    counterparty_id=target_id,
                    return_id=request.id,
                )

        logger.info("Return %s requested: %s -> %s, %s unit(s)", request.id, requester_id, target_id, quantity)
        return request

    def resolve_return(self, return_id: int, approve: bool, actor: Optional[int] = None) -> OperationResult:
        return self._execute("resolve_return", self._resolve_return, return_id, bool(approve), actor)

    def _resolve_return(self, return_id, approve, actor):
        request = self._get_or_404(ReturnRequest, return_id)
        self._require_actor(actor, request.target_id, request)
        self._require_pending(request, ReturnStatus.PENDING)

        requester_id, target_id = request.requester_id, request.target_id
        keys = [(requester_id, product_id) for product_id in sorted({code.product_id for code in request.codes})]
        with self._critical_section((LockDomain.VIRTUAL_CODE_ALLOCATION, keys)):
            db.session.refresh(request)
            self._require_pending(request, ReturnStatus.PENDING)

            codes = self.ledger.get_codes(request.code_ids, for_update=True)
            if approve:
                self.ledger.set_status(
                    codes, VirtualCodeStatus.IN_STOCK, OwnerUpdate(owner_id=target_id, previous_owner_id=requester_id)
                )
                request.status = ReturnStatus.APPROVED
                entry = dict(organization_id=target_id, action=HistoryAction.RETURN_IN, counterparty_id=requester_id)
            else:
                self.ledger.set_status(
                    codes, VirtualCodeStatus.IN_STOCK, OwnerUpdate(owner_id=requester_id, previous_owner_id=target_id)
                )
                request.status = ReturnStatus.REJECTED
                entry = dict(organization_id=requester_id, action=HistoryAction.REJECTION, counterparty_id=target_id)
            request.resolved_at = self.now()

            self.history.record_per_product(
                codes, direction=HistoryDirection.IN, return_id=request.id, **entry
            )

        logger.info("Return %s %s", return_id, "approved" if approve else "rejected")
        return request

    # ---------- disposal ----------

    def dispose(self, owner_id: int, code_ids: Iterable[int]) -> OperationResult:
        return self._execute("dispose", self._dispose, owner_id, code_ids)

    def _dispose(self, owner_id, code_ids):
        ids = validate_code_ids(code_ids)
        load_active_organization(owner_id, self.rules.disposal_roles)
        codes = self.ledger.get_codes(ids)
        self._require_ownership(owner_id, codes)

        keys = [(owner_id, product_id) for product_id in sorted({code.product_id for code in codes})]
        quick = self.rules.locks.quick_timeout
        with self._critical_section((LockDomain.VIRTUAL_CODE_ALLOCATION, keys), timeout=quick):
            codes = self.ledger.get_codes(ids, for_update=True)
            self._require_ownership(owner_id, codes)
            self.ledger.set_status(codes, VirtualCodeStatus.DISPOSED)
            self.history.record_per_product(
                codes,
                organization_id=owner_id,
                action=HistoryAction.DISPOSAL,
                direction=HistoryDirection.OUT,
            )

        logger.info("Disposed %s unit(s) at organization %s", len(codes), owner_id)
        return codes

    @staticmethod
    def _require_ownership(owner_id, codes):
        for code in codes:
            if code.owner_id != owner_id:
                raise Unauthorized(
                    EM.NOT_CODE_OWNER.format(code=code.code, org_id=owner_id),
                    details={"code_id": code.id},
                )
