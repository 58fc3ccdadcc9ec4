from datetime import timedelta, timezone

import pytest

from pdotrace.extensions import db
from pdotrace.models import (
    HistoryAction,
    HistoryDirection,
    HistoryEntry,
    TreatmentRecord,
    TreatmentStatus,
    VirtualCodeStatus,
)
from pdotrace.utils.timezone_utils import TimezoneUtils

from .conftest import PATIENT_HASH

KST = timezone(timedelta(hours=9))


@pytest.fixture
def treated(coordinator, stock_hospital, orgs, products):
    stock_hospital(4)
    result = coordinator.register_treatment(orgs.hospital, PATIENT_HASH, [(products.mono, 2)])
    assert result.success, result.message
    return result.data


class TestRegisterTreatment:

    def test_consumes_hospital_stock(self, coordinator, treated, orgs, products, clock):
        assert treated.status == TreatmentStatus.COMPLETED
        assert treated.patient_phone_hash == PATIENT_HASH
        assert len(treated.codes) == 2
        assert all(c.status == VirtualCodeStatus.USED for c in treated.codes)
        assert coordinator.ledger.count_by_status(orgs.hospital, products.mono, VirtualCodeStatus.IN_STOCK) == 2

        entry = HistoryEntry.query.filter_by(action=HistoryAction.TREATMENT).one()
        assert entry.direction == HistoryDirection.INTERNAL
        assert entry.organization_id == orgs.hospital
        assert entry.treatment_id == treated.id
        assert entry.quantity == 2

    def test_requires_hospital(self, coordinator, produce, orgs, products):
        produce(1)
        result = coordinator.register_treatment(orgs.manufacturer, PATIENT_HASH, [(products.mono, 1)])
        assert result.error_code == 'UNAUTHORIZED'

    def test_requires_patient(self, coordinator, stock_hospital, orgs, products):
        stock_hospital(1)
        result = coordinator.register_treatment(orgs.hospital, '  ', [(products.mono, 1)])
        assert result.error_code == 'VALIDATION_ERROR'

    def test_rejects_future_date(self, coordinator, stock_hospital, orgs, products, clock):
        stock_hospital(1)
        result = coordinator.register_treatment(
            orgs.hospital, PATIENT_HASH, [(products.mono, 1)], treatment_date=clock() + timedelta(minutes=5)
        )
        assert result.error_code == 'VALIDATION_ERROR'

    def test_quantity_cap(self, coordinator, orgs, products):
        result = coordinator.register_treatment(orgs.hospital, PATIENT_HASH, [(products.mono, 101)])
        assert result.error_code == 'VALIDATION_ERROR'

    def test_only_own_stock(self, coordinator, stock_hospital, orgs, products):
        stock_hospital(2)
        result = coordinator.register_treatment(orgs.hospital_b, PATIENT_HASH, [(products.mono, 1)])
        assert result.error_code == 'INSUFFICIENT_STOCK'


class TestRecall:

    def test_recall_just_inside_window(self, coordinator, treated, orgs, clock):
        clock.advance(hours=23, minutes=59, seconds=59)

        result = coordinator.recall(orgs.hospital, treated.id, 'Sterility concern')

        assert result.success
        assert result.data.status == TreatmentStatus.RECALLED
        assert result.data.recall_reason == 'Sterility concern'
        assert all(c.status == VirtualCodeStatus.RECALLED for c in result.data.codes)

        entry = HistoryEntry.query.filter_by(action=HistoryAction.RECALL).one()
        assert entry.quantity == 2
        assert entry.treatment_id == treated.id

    def test_recall_just_outside_window(self, coordinator, treated, orgs, clock):
        clock.advance(hours=24, seconds=1)

        result = coordinator.recall(orgs.hospital, treated.id)

        assert result.error_code == 'RECALL_WINDOW_EXPIRED'
        assert all(c.status == VirtualCodeStatus.USED for c in treated.codes)
        assert HistoryEntry.query.filter_by(action=HistoryAction.RECALL).count() == 0

    def test_recall_twice(self, coordinator, treated, orgs):
        assert coordinator.recall(orgs.hospital, treated.id).success
        assert coordinator.recall(orgs.hospital, treated.id).error_code == 'INVALID_STATUS_FOR_RECALL'

    def test_other_hospital_cannot_recall(self, coordinator, treated, orgs):
        assert coordinator.recall(orgs.hospital_b, treated.id).error_code == 'UNAUTHORIZED'

    def test_distributor_cannot_recall(self, coordinator, treated, orgs):
        assert coordinator.recall(orgs.distributor, treated.id).error_code == 'UNAUTHORIZED'

    def test_unknown_treatment(self, coordinator, orgs):
        assert coordinator.recall(orgs.hospital, 999).error_code == 'NOT_FOUND'

    def test_reason_length(self, coordinator, treated, orgs):
        assert coordinator.recall(orgs.hospital, treated.id, 'x' * 501).error_code == 'VALIDATION_ERROR'

    def test_eligibility_reports_remaining_time(self, coordinator, treated, orgs, clock):
        clock.advance(hours=20)
        eligibility = coordinator.recall_eligibility(orgs.hospital, treated.id).unwrap()
        assert eligibility.eligible
        assert eligibility.remaining == timedelta(hours=4)

        clock.advance(hours=5)
        eligibility = coordinator.recall_eligibility(orgs.hospital, treated.id).unwrap()
        assert not eligibility.eligible
        assert eligibility.reason == 'RECALL_WINDOW_EXPIRED'
        assert eligibility.remaining == timedelta(0)


class TestTreatmentTimeZones:

    @pytest.fixture
    def treated_in_seoul(self, coordinator, stock_hospital, orgs, products, clock):
        stock_hospital(2)
        result = coordinator.register_treatment(
            orgs.hospital, PATIENT_HASH, [(products.mono, 1)], treatment_date=clock().astimezone(KST)
        )
        assert result.success, result.message
        return result.data.id

    def test_offset_timestamp_is_stored_as_utc(self, treated_in_seoul, clock):
        record = db.session.get(TreatmentRecord, treated_in_seoul)
        db.session.refresh(record)
        assert TimezoneUtils.ensure_timezone_aware(record.treatment_date) == clock()

    def test_recall_window_counts_from_the_real_instant(self, coordinator, treated_in_seoul, orgs, clock):
        clock.advance(hours=24, seconds=1)
        result = coordinator.recall(orgs.hospital, treated_in_seoul)
        assert result.error_code == 'RECALL_WINDOW_EXPIRED'

    def test_recall_inside_window_with_offset_timestamp(self, coordinator, treated_in_seoul, orgs, clock):
        clock.advance(hours=23, minutes=59, seconds=59)
        assert coordinator.recall(orgs.hospital, treated_in_seoul).success

    def test_recall_clock_in_local_time(self, coordinator, treated_in_seoul, orgs, clock):
        clock.current = clock.advance(hours=25).astimezone(KST)
        result = coordinator.recall(orgs.hospital, treated_in_seoul)
        assert result.error_code == 'RECALL_WINDOW_EXPIRED'
