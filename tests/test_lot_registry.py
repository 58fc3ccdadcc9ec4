from datetime import date, timedelta

import pytest

from pdotrace.extensions import db
from pdotrace.models import Lot, ManufacturerSettings, ProductStatus
from pdotrace.services.traceability import LockDomain, add_months, format_lot_number

from .conftest import MANUFACTURED


class TestLotNumbering:

    def test_first_lot_of_the_day(self, produce):
        lot = produce(2)
        assert lot.lot_number == 'ND-20250301-001'
        assert lot.sequence == 1

    def test_sequence_increments_per_day(self, produce, products):
        produce(1)
        second = produce(1, product_id=products.cog)
        other_day = produce(1, manufacture_date=MANUFACTURED + timedelta(days=1))

        assert second.lot_number == 'ND-20250301-002'
        assert other_day.lot_number == 'ND-20250302-001'

    def test_sequences_are_per_manufacturer(self, coordinator, produce, orgs, products, db_session):
        produce(1)
        result = coordinator.produce_lot(orgs.other_manufacturer, products.foreign, 1, MANUFACTURED)
        assert result.success
        # No settings row: falls back to the configured default prefix
        assert result.data.lot_number == 'ND-20250301-001'

    def test_manufacturer_prefix(self, produce, orgs, db_session):
        settings = ManufacturerSettings.query.filter_by(organization_id=orgs.manufacturer).one()
        settings.lot_prefix = 'PX'
        db_session.commit()

        assert produce(1).lot_number == 'PX-20250301-001'

    def test_prefix_outside_pattern_is_rejected(self, coordinator, orgs, products, db_session):
        settings = ManufacturerSettings.query.filter_by(organization_id=orgs.manufacturer).one()
        settings.lot_prefix = 'NDX'
        db_session.commit()

        result = coordinator.produce_lot(orgs.manufacturer, products.mono, 1, MANUFACTURED)
        assert result.error_code == 'INVALID_LOT_FORMAT'
        assert Lot.query.count() == 0

    def test_format_helper(self):
        assert format_lot_number('ND', date(2024, 12, 31), 7) == 'ND-20241231-007'


class TestExpiry:

    def test_default_expiry_uses_manufacturer_months(self, produce):
        assert produce(1).expiry_date == date(2027, 3, 1)

    def test_minimum_shelf_life_boundary(self, coordinator, orgs, products, db_session):
        too_soon = coordinator.produce_lot(
            orgs.manufacturer, products.mono, 1, MANUFACTURED, MANUFACTURED + timedelta(days=29)
        )
        assert too_soon.error_code == 'INVALID_EXPIRY'

        exact = coordinator.produce_lot(
            orgs.manufacturer, products.mono, 1, MANUFACTURED, MANUFACTURED + timedelta(days=30)
        )
        assert exact.success

    def test_maximum_shelf_life(self, coordinator, orgs, products, db_session):
        ok = coordinator.produce_lot(orgs.manufacturer, products.mono, 1, MANUFACTURED, date(2030, 3, 1))
        assert ok.success

        too_late = coordinator.produce_lot(orgs.manufacturer, products.mono, 1, MANUFACTURED, date(2030, 3, 2))
        assert too_late.error_code == 'INVALID_EXPIRY'

    def test_add_months_clamps_month_end(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
        assert add_months(date(2024, 2, 29), 12) == date(2025, 2, 28)
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)


class TestProductionGuards:

    @pytest.mark.parametrize('quantity', [0, -1, 1000001])
    def test_quantity_range(self, coordinator, orgs, products, quantity, db_session):
        result = coordinator.produce_lot(orgs.manufacturer, products.mono, quantity, MANUFACTURED)
        assert result.error_code == 'VALIDATION_ERROR'

    def test_only_manufacturers_produce(self, coordinator, orgs, products, db_session):
        result = coordinator.produce_lot(orgs.distributor, products.mono, 1, MANUFACTURED)
        assert result.error_code == 'UNAUTHORIZED'

    def test_foreign_product_rejected(self, coordinator, orgs, products, db_session):
        result = coordinator.produce_lot(orgs.manufacturer, products.foreign, 1, MANUFACTURED)
        assert result.error_code == 'UNAUTHORIZED'

    def test_unknown_product(self, coordinator, orgs, products, db_session):
        result = coordinator.produce_lot(orgs.manufacturer, 9999, 1, MANUFACTURED)
        assert result.error_code == 'NOT_FOUND'

    def test_inactive_product_cannot_be_produced(self, coordinator, orgs, products, db_session):
        toggled = coordinator.set_product_status(orgs.manufacturer, products.mono, 'INACTIVE')
        assert toggled.success
        assert toggled.data.status == ProductStatus.INACTIVE

        result = coordinator.produce_lot(orgs.manufacturer, products.mono, 1, MANUFACTURED)
        assert result.error_code == 'VALIDATION_ERROR'

    def test_only_owner_toggles_product_status(self, coordinator, orgs, products, db_session):
        result = coordinator.set_product_status(orgs.other_manufacturer, products.mono, 'INACTIVE')
        assert result.error_code == 'UNAUTHORIZED'

    def test_sequence_conflict_after_retries(self, coordinator, produce, monkeypatch, orgs, products, db_session):
        produce(1)
        monkeypatch.setattr(coordinator.lots, '_next_sequence', lambda manufacturer_id, day: 1)

        result = coordinator.produce_lot(orgs.manufacturer, products.mono, 1, MANUFACTURED)

        assert result.error_code == 'SEQUENCE_CONFLICT'
        assert Lot.query.count() == 1

    def test_each_retry_holds_the_production_lock(self, coordinator, produce, monkeypatch, orgs, products, db_session):
        produce(1)
        key = (orgs.manufacturer, MANUFACTURED.toordinal())
        locks = coordinator.locks
        real_acquire = locks._acquire
        real_write = coordinator.lots._write_lot
        acquisitions, held = [], []

        def recording_acquire(domain, lock_key, deadline):
            if domain == LockDomain.LOT_PRODUCTION:
                acquisitions.append(lock_key)
            return real_acquire(domain, lock_key, deadline)

        def checked_write(*args):
            held.append(locks.is_held(LockDomain.LOT_PRODUCTION, key))
            return real_write(*args)

        monkeypatch.setattr(locks, '_acquire', recording_acquire)
        monkeypatch.setattr(coordinator.lots, '_write_lot', checked_write)
        monkeypatch.setattr(coordinator.lots, '_next_sequence', lambda manufacturer_id, day: 1)

        result = coordinator.produce_lot(orgs.manufacturer, products.mono, 1, MANUFACTURED)

        attempts = coordinator.rules.sequence_retries
        assert result.error_code == 'SEQUENCE_CONFLICT'
        assert acquisitions == [key] * attempts
        assert held == [True] * attempts
        assert not locks.is_held(LockDomain.LOT_PRODUCTION, key)

    def test_lots_are_write_once(self, produce, db_session):
        lot = produce(1)
        lot.quantity = 50
        with pytest.raises(ValueError):
            db.session.flush()
        db.session.rollback()

    def test_referenced_product_identity_is_frozen(self, produce, products, db_session):
        from pdotrace.models import Product

        produce(1)
        product = db.session.get(Product, products.mono)
        product.code = 'RENAMED001'
        with pytest.raises(ValueError):
            db.session.flush()
        db.session.rollback()
