"""
Pytest configuration and shared fixtures for the traceability tests.
"""
import os
import tempfile
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from pdotrace import create_app
from pdotrace.extensions import db, get_engine
from pdotrace.models import (
    ManufacturerSettings,
    Organization,
    OrganizationRole,
    OrganizationStatus,
    Product,
)
from pdotrace.utils.phone import hash_phone

# 10:00 in Seoul on 2025-03-10
START = datetime(2025, 3, 10, 1, 0, 0, tzinfo=timezone.utc)
MANUFACTURED = date(2025, 3, 1)
PATIENT_HASH = hash_phone('010-1234-5678')


class FrozenClock:
    """Controllable time source handed to the coordinator."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    # Temp file rather than :memory: so worker threads share one database
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'SQLALCHEMY_CREATE_ALL': False,
        'TRACE_LOCK_BACKEND': 'process',
        'TRACE_LOCK_RETRY_DELAY': 0.0,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def db_session(app):
    with app.app_context():
        yield db.session
        db.session.rollback()


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def engine(db_session, clock):
    return get_engine().with_clock(clock)


@pytest.fixture
def coordinator(engine):
    return engine.coordinator


def _org(name, role, status=OrganizationStatus.ACTIVE):
    org = Organization(name=name, role=role, status=status)
    db.session.add(org)
    return org


@pytest.fixture
def orgs(db_session):
    manufacturer = _org('Needle Works', OrganizationRole.MANUFACTURER)
    other_manufacturer = _org('Thread Labs', OrganizationRole.MANUFACTURER)
    distributor = _org('Seoul Medical Supply', OrganizationRole.DISTRIBUTOR)
    distributor_b = _org('Busan Pharma Logistics', OrganizationRole.DISTRIBUTOR)
    hospital = _org('Gangnam Clinic', OrganizationRole.HOSPITAL)
    hospital_b = _org('Haeundae Clinic', OrganizationRole.HOSPITAL)
    inactive = _org('Dormant Distributor', OrganizationRole.DISTRIBUTOR, OrganizationStatus.INACTIVE)
    db_session.flush()

    db_session.add(ManufacturerSettings(organization_id=manufacturer.id, lot_prefix='ND', default_expiry_months=24))
    db_session.commit()

    return SimpleNamespace(
        manufacturer=manufacturer.id,
        other_manufacturer=other_manufacturer.id,
        distributor=distributor.id,
        distributor_b=distributor_b.id,
        hospital=hospital.id,
        hospital_b=hospital_b.id,
        inactive=inactive.id,
    )


@pytest.fixture
def products(db_session, orgs):
    mono = Product(organization_id=orgs.manufacturer, name='Mono PDO 29G', code='PDOMONO29G')
    cog = Product(organization_id=orgs.manufacturer, name='Cog PDO 19G', code='PDOCOG19G')
    foreign = Product(organization_id=orgs.other_manufacturer, name='Screw PDO', code='TLSCREW01')
    db_session.add_all([mono, cog, foreign])
    db_session.commit()
    return SimpleNamespace(mono=mono.id, cog=cog.id, foreign=foreign.id)


@pytest.fixture
def produce(coordinator, orgs, products):
    """Produce a lot at the default manufacturer and return it."""

    def _produce(quantity, product_id=None, manufacture_date=MANUFACTURED, expiry_date=None):
        result = coordinator.produce_lot(
            orgs.manufacturer, product_id or products.mono, quantity, manufacture_date, expiry_date
        )
        assert result.success, result.message
        return result.data

    return _produce


@pytest.fixture
def ship(coordinator):
    """Create and accept a shipment; returns the completed shipment."""

    def _ship(sender, receiver, lines):
        created = coordinator.create_shipment(sender, receiver, lines)
        assert created.success, created.message
        accepted = coordinator.accept_shipment(created.data.id)
        assert accepted.success, accepted.message
        return accepted.data

    return _ship


@pytest.fixture
def stock_hospital(produce, ship, orgs, products):
    """Move ``quantity`` mono units through the chain into the default hospital."""

    def _stock(quantity, product_id=None):
        product_id = product_id or products.mono
        produce(quantity, product_id=product_id)
        ship(orgs.manufacturer, orgs.distributor, [(product_id, quantity)])
        ship(orgs.distributor, orgs.hospital, [(product_id, quantity)])

    return _stock
