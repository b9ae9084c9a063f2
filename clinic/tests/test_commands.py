from io import StringIO

import pytest
from django.core.management import call_command

from clinic.domain import Department, Status
from clinic.services import events
from clinic.services.runtime import get_engine, reset_engine

pytestmark = pytest.mark.django_db


@pytest.fixture(autouse=True)
def fresh_engine(settings):
    settings.CLINIC_NOTIFIER = 'clinic.services.events.InMemoryNotifier'
    reset_engine()
    yield
    reset_engine()


def test_seed_clinic_covers_every_stage():
    out = StringIO()
    call_command('seed_clinic', stdout=out)
    engine = get_engine()
    statuses = sorted(p.status for p in engine.list_patients())
    assert statuses == sorted([Status.WAITING, Status.IN_TRIAGE, Status.WITH_DOCTOR, Status.LAB, Status.PHARMACY])
    assert len(engine.list_queue(Department.LAB)) == 2
    assert len(engine.list_pending_prescriptions()) == 2
    assert 'Seeded 5 patients' in out.getvalue()

    out = StringIO()
    call_command('seed_clinic', stdout=out)
    assert 'already has patients' in out.getvalue()
    assert len(engine.list_patients()) == 5


def test_expiry_sweep_flags_soon_expiring_drugs():
    call_command('seed_clinic', stdout=StringIO())
    out = StringIO()
    call_command('expiry_sweep', '--days', '30', stdout=out)
    engine = get_engine()
    assert [e.data['drugId'] for e in engine.notifier.of_kind(events.INVENTORY_EXPIRING)] == ['OMP-20']
    assert 'Flagged 1 items' in out.getvalue()
    assert engine.get_inventory_level('OMP-20').flagged_expiring
