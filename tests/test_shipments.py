import dataclasses

import pytest

from pdotrace.models import (
    HistoryAction,
    HistoryDirection,
    HistoryEntry,
    ShipmentStatus,
    VirtualCode,
    VirtualCodeStatus,
)
from pdotrace.services.traceability import ProductLine, TraceabilityEngine


def _history(org_id):
    return HistoryEntry.query.filter_by(organization_id=org_id).order_by(HistoryEntry.id).all()


class TestCreateShipment:

    def test_allocates_fifo_and_marks_pending(self, coordinator, produce, orgs, products):
        lot = produce(10)

        result = coordinator.create_shipment(orgs.manufacturer, orgs.distributor, [ProductLine(products.mono, 4)])

        assert result.success
        shipment = result.data
        assert shipment.status == ShipmentStatus.PENDING
        assert [line.quantity for line in shipment.lines] == [4]
        assert [c.sequence_number for c in shipment.codes] == [1, 2, 3, 4]
        for code in shipment.codes:
            assert code.lot_id == lot.id
            assert code.status == VirtualCodeStatus.PENDING
            assert code.owner_id == orgs.manufacturer
            assert code.pending_to_id == orgs.distributor

        out = [e for e in _history(orgs.manufacturer) if e.action == HistoryAction.SHIPMENT_OUT]
        assert len(out) == 1
        assert out[0].direction == HistoryDirection.OUT
        assert out[0].counterparty_id == orgs.distributor
        assert out[0].shipment_id == shipment.id
        assert out[0].quantity == 4

    def test_one_history_entry_per_line(self, coordinator, produce, orgs, products):
        produce(3)
        produce(2, product_id=products.cog)

        result = coordinator.create_shipment(
            orgs.manufacturer, orgs.distributor, [(products.mono, 3), (products.cog, 2)]
        )

        assert result.success
        out = [e for e in _history(orgs.manufacturer) if e.action == HistoryAction.SHIPMENT_OUT]
        assert [(e.product_id, e.quantity) for e in out] == [(products.mono, 3), (products.cog, 2)]

    @pytest.mark.parametrize('sender,receiver', [
        ('hospital', 'distributor'),
        ('manufacturer', 'hospital'),
        ('distributor', 'manufacturer'),
        ('hospital', 'hospital_b'),
    ])
    def test_route_matrix(self, coordinator, produce, orgs, products, sender, receiver):
        produce(1)
        result = coordinator.create_shipment(getattr(orgs, sender), getattr(orgs, receiver), [(products.mono, 1)])
        assert result.error_code == 'UNAUTHORIZED'

    def test_distributor_to_distributor_is_allowed(self, coordinator, produce, ship, orgs, products):
        produce(2)
        ship(orgs.manufacturer, orgs.distributor, [(products.mono, 2)])

        result = coordinator.create_shipment(orgs.distributor, orgs.distributor_b, [(products.mono, 2)])
        assert result.success

    @pytest.mark.parametrize('lines', [
        [],
        [(1, 0)],
        [(1, -3)],
        [(1, 1), (1, 2)],
    ])
    def test_malformed_lines(self, coordinator, orgs, products, lines):
        lines = [(products.mono, qty) for _, qty in lines]
        result = coordinator.create_shipment(orgs.manufacturer, orgs.distributor, lines)
        assert result.error_code == 'VALIDATION_ERROR'

    @pytest.mark.parametrize('lines', [
        [('abc', 1)],
        [(1, None)],
        [(1,)],
        5,
    ])
    def test_uncoercible_lines(self, coordinator, orgs, products, lines):
        history_before = HistoryEntry.query.count()

        result = coordinator.create_shipment(orgs.manufacturer, orgs.distributor, lines)

        assert result.error_code == 'VALIDATION_ERROR'
        assert HistoryEntry.query.count() == history_before

    def test_same_party(self, coordinator, orgs, products):
        result = coordinator.create_shipment(orgs.distributor, orgs.distributor, [(products.mono, 1)])
        assert result.error_code == 'VALIDATION_ERROR'

    def test_inactive_receiver(self, coordinator, produce, orgs, products):
        produce(1)
        result = coordinator.create_shipment(orgs.manufacturer, orgs.inactive, [(products.mono, 1)])
        assert result.error_code == 'UNAUTHORIZED'

    def test_total_quantity_limit(self, engine, clock, produce, orgs, products):
        rules = dataclasses.replace(engine.rules, max_shipment_quantity=5)
        coordinator = TraceabilityEngine(rules, engine.locks, clock=clock).coordinator
        produce(3)
        produce(3, product_id=products.cog)

        result = coordinator.create_shipment(orgs.manufacturer, orgs.distributor, [(products.mono, 3), (products.cog, 3)])
        assert result.error_code == 'VALIDATION_ERROR'

    def test_insufficient_stock_is_all_or_nothing(self, coordinator, produce, orgs, products):
        produce(5)
        produce(1, product_id=products.cog)

        result = coordinator.create_shipment(
            orgs.manufacturer, orgs.distributor, [(products.mono, 5), (products.cog, 2)]
        )

        assert result.error_code == 'INSUFFICIENT_STOCK'
        assert VirtualCode.query.filter_by(status=VirtualCodeStatus.PENDING).count() == 0
        assert HistoryEntry.query.filter_by(action=HistoryAction.SHIPMENT_OUT).count() == 0


class TestResolveShipment:

    @pytest.fixture
    def pending(self, coordinator, produce, orgs, products):
        produce(10)
        return coordinator.create_shipment(orgs.manufacturer, orgs.distributor, [(products.mono, 4)]).data

    def test_accept_transfers_ownership(self, coordinator, pending, orgs):
        result = coordinator.accept_shipment(pending.id, actor=orgs.distributor)

        assert result.success
        assert result.data.status == ShipmentStatus.COMPLETED
        for code in result.data.codes:
            assert code.status == VirtualCodeStatus.IN_STOCK
            assert code.owner_id == orgs.distributor
            assert code.previous_owner_id == orgs.manufacturer
            assert code.pending_to_id is None

        incoming = _history(orgs.distributor)
        assert [(e.action, e.direction, e.quantity, e.counterparty_id) for e in incoming] == [
            (HistoryAction.SHIPMENT_IN, HistoryDirection.IN, 4, orgs.manufacturer)
        ]

    def test_second_accept_is_already_resolved(self, coordinator, pending, orgs):
        assert coordinator.accept_shipment(pending.id).success
        before = [(c.id, c.status, c.owner_id) for c in VirtualCode.query.order_by(VirtualCode.id)]
        history_before = HistoryEntry.query.count()

        again = coordinator.accept_shipment(pending.id)

        assert again.error_code == 'ALREADY_RESOLVED'
        assert [(c.id, c.status, c.owner_id) for c in VirtualCode.query.order_by(VirtualCode.id)] == before
        assert HistoryEntry.query.count() == history_before

    def test_reject_returns_stock_to_sender(self, coordinator, pending, orgs, products):
        result = coordinator.reject_shipment(pending.id, actor=orgs.distributor)

        assert result.success
        assert result.data.status == ShipmentStatus.REJECTED
        for code in result.data.codes:
            assert code.status == VirtualCodeStatus.IN_STOCK
            assert code.owner_id == orgs.manufacturer
            assert code.pending_to_id is None

        reversal = _history(orgs.manufacturer)[-1]
        assert reversal.action == HistoryAction.SHIPMENT_IN
        assert reversal.direction == HistoryDirection.IN
        assert reversal.counterparty_id == orgs.distributor
        assert coordinator.ledger.count_by_status(orgs.manufacturer, products.mono, VirtualCodeStatus.IN_STOCK) == 10

    def test_reject_after_accept(self, coordinator, pending):
        assert coordinator.accept_shipment(pending.id).success
        assert coordinator.reject_shipment(pending.id).error_code == 'ALREADY_RESOLVED'

    def test_only_receiver_may_resolve(self, coordinator, pending, orgs):
        assert coordinator.accept_shipment(pending.id, actor=orgs.distributor_b).error_code == 'UNAUTHORIZED'
        assert coordinator.reject_shipment(pending.id, actor=orgs.manufacturer).error_code == 'UNAUTHORIZED'

    def test_unknown_shipment(self, coordinator, orgs):
        assert coordinator.accept_shipment(424242).error_code == 'NOT_FOUND'

    def test_pending_codes_cannot_be_reallocated(self, coordinator, pending, orgs, products):
        result = coordinator.create_shipment(orgs.manufacturer, orgs.distributor_b, [(products.mono, 7)])
        assert result.error_code == 'INSUFFICIENT_STOCK'
