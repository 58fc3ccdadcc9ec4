from datetime import timedelta, timezone

import pytest

from pdotrace.errors import ImmutableHistoryError
from pdotrace.extensions import db
from pdotrace.models import HistoryAction, HistoryEntry, VirtualCode


class TestAppendOnly:

    def test_update_is_rejected(self, produce, db_session):
        produce(1)
        entry = HistoryEntry.query.one()
        entry.quantity = 99
        with pytest.raises(ImmutableHistoryError):
            db.session.flush()
        db.session.rollback()
        assert HistoryEntry.query.one().quantity == 1

    def test_delete_is_rejected(self, produce, db_session):
        produce(1)
        db.session.delete(HistoryEntry.query.one())
        with pytest.raises(ImmutableHistoryError):
            db.session.flush()
        db.session.rollback()
        assert HistoryEntry.query.count() == 1


class TestQueries:

    def test_query_by_action_and_time(self, engine, coordinator, produce, ship, orgs, products, clock):
        produce(3)
        clock.advance(hours=2)
        ship(orgs.manufacturer, orgs.distributor, [(products.mono, 2)])

        everything = engine.history.query(orgs.manufacturer)
        assert [e.action for e in everything] == [HistoryAction.LOT_PRODUCTION, HistoryAction.SHIPMENT_OUT]

        only_out = engine.history.query(orgs.manufacturer, action=HistoryAction.SHIPMENT_OUT)
        assert [e.quantity for e in only_out] == [2]

        recent = engine.history.query(orgs.manufacturer, start=clock() - timedelta(hours=1))
        assert [e.action for e in recent] == [HistoryAction.SHIPMENT_OUT]

        early = engine.history.query(orgs.manufacturer, end=clock() - timedelta(hours=1))
        assert [e.action for e in early] == [HistoryAction.LOT_PRODUCTION]

    def test_trace_single_code(self, engine, produce, ship, orgs, products):
        lot = produce(2)
        ship(orgs.manufacturer, orgs.distributor, [(products.mono, 1)])
        first = VirtualCode.query.filter_by(lot_id=lot.id, sequence_number=1).one()

        trail = engine.history.for_codes([first.id])
        assert [(e.organization_id, e.action) for e in trail] == [
            (orgs.manufacturer, HistoryAction.LOT_PRODUCTION),
            (orgs.manufacturer, HistoryAction.SHIPMENT_OUT),
            (orgs.distributor, HistoryAction.SHIPMENT_IN),
        ]
        assert engine.history.for_codes([]) == []

    def test_failed_operation_leaves_no_history(self, coordinator, produce, orgs, products):
        produce(1)
        before = HistoryEntry.query.count()
        assert not coordinator.create_shipment(orgs.manufacturer, orgs.distributor, [(products.mono, 2)])
        assert HistoryEntry.query.count() == before

    def test_time_bounds_in_local_offset(self, engine, produce, ship, orgs, products, clock):
        seoul = timezone(timedelta(hours=9))
        produce(3)
        clock.advance(hours=2)
        ship(orgs.manufacturer, orgs.distributor, [(products.mono, 2)])

        boundary = (clock() - timedelta(hours=1)).astimezone(seoul)
        recent = engine.history.query(orgs.manufacturer, start=boundary)
        early = engine.history.query(orgs.manufacturer, end=boundary)

        assert [e.action for e in recent] == [HistoryAction.SHIPMENT_OUT]
        assert [e.action for e in early] == [HistoryAction.LOT_PRODUCTION]
