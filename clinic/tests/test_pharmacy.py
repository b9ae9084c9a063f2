from datetime import timedelta

import pytest
from django.utils import timezone

from clinic.domain import PrescriptionStatus
from clinic.exceptions import (
    ExpiredStockError,
    IllegalTransitionError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from clinic.services.inventory import InventoryLedger
from clinic.services.pharmacy import PharmacyDispenser
from clinic.tests.conftest import FailingJournal


@pytest.fixture
def ledger():
    today = timezone.localdate()
    ledger = InventoryLedger()
    ledger.add_item('AMX-500', 'Amoxicillin 500mg', 25, expiry_date=today + timedelta(days=90))
    ledger.add_item('OMP-20', 'Omeprazole 20mg', 50, expiry_date=today - timedelta(days=1))
    return ledger


@pytest.fixture
def pharmacy(ledger):
    return PharmacyDispenser(ledger)


def prescribe(pharmacy, drug_id='AMX-500', quantity=21):
    return pharmacy.create_prescription('P00001', 1, drug_id, quantity, '1x3 for 7 days', 'Dr. Girma')


def test_dispense_decrements_stock(pharmacy, ledger):
    rx = prescribe(pharmacy)
    dispensed, item = pharmacy.dispense(rx.id)
    assert dispensed.status == PrescriptionStatus.DISPENSED
    assert dispensed.closed_at is not None
    assert item.quantity == 4
    assert ledger.level('AMX-500') == 4
    assert pharmacy.pending() == []


def test_insufficient_stock_keeps_prescription_pending(pharmacy, ledger):
    rx = prescribe(pharmacy, quantity=26)
    with pytest.raises(InsufficientStockError):
        pharmacy.dispense(rx.id)
    assert pharmacy.get(rx.id).status == PrescriptionStatus.PENDING
    assert ledger.level('AMX-500') == 25


def test_expired_stock_is_refused(pharmacy, ledger):
    rx = prescribe(pharmacy, drug_id='OMP-20', quantity=1)
    with pytest.raises(ExpiredStockError):
        pharmacy.dispense(rx.id)
    assert ledger.level('OMP-20') == 50


def test_cancel_then_dispense_is_illegal(pharmacy, ledger):
    rx = prescribe(pharmacy)
    assert pharmacy.cancel(rx.id).status == PrescriptionStatus.CANCELLED
    with pytest.raises(IllegalTransitionError):
        pharmacy.dispense(rx.id)
    with pytest.raises(IllegalTransitionError):
        pharmacy.cancel(rx.id)
    assert ledger.level('AMX-500') == 25


def test_request_checks(pharmacy):
    with pytest.raises(NotFoundError):
        prescribe(pharmacy, drug_id='XYZ')
    with pytest.raises(ValidationError):
        prescribe(pharmacy, quantity=0)
    with pytest.raises(ValidationError):
        pharmacy.create_prescription('P00001', 1, 'AMX-500', 1, '  ', 'Dr. Girma')
    with pytest.raises(NotFoundError):
        pharmacy.dispense('RX-404')


def test_reopen_puts_stock_back(pharmacy, ledger):
    rx = prescribe(pharmacy)
    pharmacy.dispense(rx.id)
    pharmacy.reopen(rx.id)
    assert pharmacy.get(rx.id).status == PrescriptionStatus.PENDING
    assert ledger.level('AMX-500') == 25


def test_storage_failure_returns_withdrawn_units(ledger):
    journal = FailingJournal()
    pharmacy = PharmacyDispenser(ledger, journal=journal)
    rx = prescribe(pharmacy)
    journal.failing.add('prescription_saved')
    with pytest.raises(RuntimeError):
        pharmacy.dispense(rx.id)
    assert pharmacy.get(rx.id).status == PrescriptionStatus.PENDING
    assert ledger.level('AMX-500') == 25


def test_for_encounter_filters(pharmacy):
    first = prescribe(pharmacy)
    second = pharmacy.create_prescription('P00001', 2, 'AMX-500', 1, '1x1', 'Dr. Hagos')
    pharmacy.create_prescription('P00002', 1, 'AMX-500', 1, '1x1', 'Dr. Hagos')
    assert [rx.id for rx in pharmacy.for_encounter('P00001', 1)] == [first.id]
    assert [rx.id for rx in pharmacy.for_encounter('P00001')] == [first.id, second.id]
