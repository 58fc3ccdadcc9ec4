import threading

from pdotrace.extensions import db, get_engine
from pdotrace.models import HistoryAction, HistoryEntry, VirtualCodeStatus, shipment_codes

from .conftest import PATIENT_HASH


def test_full_chain(coordinator, produce, orgs, products, clock):
    produce(10)

    to_distributor = coordinator.create_shipment(orgs.manufacturer, orgs.distributor, [(products.mono, 4)])
    assert coordinator.accept_shipment(to_distributor.data.id, actor=orgs.distributor).success

    to_hospital = coordinator.create_shipment(orgs.distributor, orgs.hospital, [(products.mono, 2)])
    assert coordinator.accept_shipment(to_hospital.data.id, actor=orgs.hospital).success

    clock.advance(hours=1)
    treatment = coordinator.register_treatment(orgs.hospital, PATIENT_HASH, [(products.mono, 2)])
    assert treatment.success

    clock.advance(hours=3)
    assert coordinator.recall(orgs.hospital, treatment.data.id, 'Lot quality alert').success

    ledger = coordinator.ledger
    assert ledger.count_by_status(orgs.manufacturer, products.mono, VirtualCodeStatus.IN_STOCK) == 6
    assert ledger.count_by_status(orgs.distributor, products.mono, VirtualCodeStatus.IN_STOCK) == 2
    assert ledger.count_by_status(orgs.hospital, products.mono, VirtualCodeStatus.RECALLED) == 2
    assert ledger.summary(orgs.hospital) == {products.mono: {'RECALLED': 2}}

    actions = [e.action for e in HistoryEntry.query.order_by(HistoryEntry.id)]
    assert actions == [
        HistoryAction.LOT_PRODUCTION,
        HistoryAction.SHIPMENT_OUT,
        HistoryAction.SHIPMENT_IN,
        HistoryAction.SHIPMENT_OUT,
        HistoryAction.SHIPMENT_IN,
        HistoryAction.TREATMENT,
        HistoryAction.RECALL,
    ]


def test_concurrent_shipments_never_share_codes(app, produce, orgs, products, clock):
    produce(10)
    results = {}
    barrier = threading.Barrier(2)

    def worker(receiver):
        with app.app_context():
            coordinator = get_engine().with_clock(clock).coordinator
            barrier.wait(5)
            result = coordinator.create_shipment(orgs.manufacturer, receiver, [(products.mono, 6)])
            results[receiver] = (result.error_code, result.data.code_ids if result.success else [])
            db.session.remove()

    threads = [threading.Thread(target=worker, args=(r,)) for r in (orgs.distributor, orgs.distributor_b)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    outcomes = sorted(code for code, _ in results.values() if code)
    assert outcomes == ['INSUFFICIENT_STOCK']
    winners = [ids for code, ids in results.values() if code is None]
    assert len(winners) == 1 and len(winners[0]) == 6

    rows = db.session.execute(db.select(shipment_codes.c.virtual_code_id)).scalars().all()
    assert len(rows) == len(set(rows)) == 6


def test_concurrent_small_shipments_split_stock(app, produce, orgs, products, clock):
    produce(10)
    results = []
    barrier = threading.Barrier(5)

    def worker():
        with app.app_context():
            coordinator = get_engine().with_clock(clock).coordinator
            barrier.wait(5)
            result = coordinator.create_shipment(orgs.manufacturer, orgs.distributor, [(products.mono, 2)])
            results.append((result.success, result.data.code_ids if result.success else []))
            db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert [ok for ok, _ in results] == [True] * 5
    allocated = [code_id for _, ids in results for code_id in ids]
    assert len(allocated) == len(set(allocated)) == 10
