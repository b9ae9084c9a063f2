from datetime import timedelta

import pytest
from django.utils import timezone

from clinic.domain import Status
from clinic.services.events import InMemoryNotifier
from clinic.services.lab import equipment_from_config
from clinic.services.workflow import WorkflowEngine

EQUIPMENT = {
    'hematology-analyzer': {'name': 'Hematology Analyzer', 'tests': ['CBC', 'ESR']},
    'biochemistry-system': {'name': 'Biochemistry System', 'tests': ['Lipid Profile', 'Glucose Fasting']},
    'centrifuge-a1': {'name': 'Centrifuge A1', 'tests': ['Urinalysis'], 'active': False},
}

VITALS = {'blood_pressure': '120/80', 'temperature': 36.8, 'heart_rate': 76, 'weight': 68.0}


class FailingJournal:
    """Journal whose chosen callbacks raise, for storage-failure tests."""

    def __init__(self, *failing):
        self.failing = set(failing)

    def __getattr__(self, name):
        def callback(*args, **kwargs):
            if name in self.failing:
                raise RuntimeError(f'{name} failed')
        return callback


def stock(engine):
    today = timezone.localdate()
    engine.add_drug('AMX-500', 'Amoxicillin 500mg', 100, expiry_date=today + timedelta(days=365))
    engine.add_drug('PCM-500', 'Paracetamol 500mg', 12, expiry_date=today + timedelta(days=400), reorder_level=10)
    engine.add_drug('OMP-20', 'Omeprazole 20mg', 5, expiry_date=today - timedelta(days=1))


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def engine(notifier):
    e = WorkflowEngine(equipment=equipment_from_config(EQUIPMENT), notifier=notifier, lock_timeout=0.5)
    stock(e)
    return e


@pytest.fixture
def walk(engine):
    """Register a patient and walk them to ``target`` along the normal path."""

    def _walk(target=Status.WAITING, name='Kebede Kassahun', urgent=False, **payload):
        patient = engine.register_patient({'name': name, 'age': 62, 'gender': 'M'}, urgent=urgent)
        if target == Status.WAITING:
            return patient
        patient = engine.advance(patient.id, Status.IN_TRIAGE)
        if target == Status.IN_TRIAGE:
            return patient
        engine.record_vitals(patient.id, VITALS)
        patient = engine.advance(patient.id, Status.WITH_DOCTOR)
        if target == Status.WITH_DOCTOR:
            return patient
        if target == Status.LAB:
            return engine.advance(patient.id, Status.LAB, {'tests': payload.get('tests', ['CBC'])})
        if target == Status.PHARMACY:
            return engine.advance(patient.id, Status.PHARMACY, {'prescriptions': payload.get('prescriptions', [
                {'drug_id': 'AMX-500', 'quantity': 21, 'dosage': '1x3 for 7 days', 'prescriber': 'Dr. Girma'},
            ])})
        raise ValueError(target)

    return _walk
