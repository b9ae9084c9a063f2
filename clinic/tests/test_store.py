import pytest

from clinic.domain import Department, LabOrderStatus, PrescriptionStatus, Status
from clinic.models import PatientRecord, QueueEntryRecord, StatusTransition, VitalsRecord
from clinic.services.events import InMemoryNotifier
from clinic.services.lab import equipment_from_config
from clinic.services.store import OrmStore
from clinic.services.workflow import WorkflowEngine
from clinic.tests.conftest import EQUIPMENT, VITALS, stock

pytestmark = pytest.mark.django_db


def new_engine():
    return WorkflowEngine(
        equipment=equipment_from_config(EQUIPMENT), journal=OrmStore(), notifier=InMemoryNotifier(),
    ).load()


def test_patient_is_written_through():
    engine = new_engine()
    patient = engine.register_patient({'name': 'Abebe Bikila', 'age': 45, 'gender': 'M', 'phone': '0911223344'})
    engine.advance(patient.id, Status.IN_TRIAGE, operator='nurse')
    engine.record_vitals(patient.id, dict(VITALS, complaint='Chest pain since morning'))

    record = PatientRecord.objects.get(id=patient.id)
    assert record.status == Status.IN_TRIAGE
    assert record.version == 3
    vitals = VitalsRecord.objects.get(patient=record, encounter=1)
    assert vitals.blood_pressure == '120/80'
    assert vitals.complaint == 'Chest pain since morning'
    assert new_engine().get_patient(patient.id).vitals.complaint == 'Chest pain since morning'
    assert list(StatusTransition.objects.filter(patient=record).values_list('to_status', flat=True)) == [
        'Waiting', 'InTriage',
    ]
    assert not QueueEntryRecord.objects.filter(patient_id=patient.id).exists()


def test_restart_reproduces_state():
    engine = new_engine()
    stock(engine)
    waiting = engine.register_patient({'name': 'Kebede Kassahun', 'age': 62, 'gender': 'M'})
    urgent = engine.register_patient({'name': 'Marta Desalegn', 'age': 28, 'gender': 'F'}, urgent=True)

    lab = engine.register_patient({'name': 'Sara Yonas', 'age': 34, 'gender': 'F'})
    engine.advance(lab.id, Status.IN_TRIAGE)
    engine.record_vitals(lab.id, VITALS)
    engine.advance(lab.id, Status.WITH_DOCTOR)
    engine.advance(lab.id, Status.LAB, {'tests': ['CBC', 'Lipid Profile']})
    cbc, lipid = engine.list_lab_orders(lab.id)
    engine.begin_processing(cbc.id)

    rx_patient = engine.register_patient({'name': 'Dawit Birhanu', 'age': 19, 'gender': 'M'})
    engine.advance(rx_patient.id, Status.IN_TRIAGE)
    engine.record_vitals(rx_patient.id, VITALS)
    engine.advance(rx_patient.id, Status.WITH_DOCTOR)
    engine.advance(rx_patient.id, Status.PHARMACY, {'prescriptions': [
        {'drug_id': 'AMX-500', 'quantity': 21, 'dosage': '1x3 for 7 days', 'prescriber': 'Dr. Girma'},
        {'drug_id': 'PCM-500', 'quantity': 6, 'dosage': '1x2 PRN', 'prescriber': 'Dr. Hagos'},
    ]})
    amx, _ = engine.list_prescriptions(rx_patient.id)
    engine.dispense(amx.id)

    restarted = new_engine()

    assert [p.to_dict(with_history=True) for p in restarted.list_patients()] == \
        [p.to_dict(with_history=True) for p in engine.list_patients()]
    assert [e.patient_id for e in restarted.list_queue(Department.OPD)] == [urgent.id, waiting.id]
    assert [e.ref for e in restarted.list_queue(Department.LAB)] == [lipid.id]
    assert restarted.get_lab_order(cbc.id).status == LabOrderStatus.IN_PROCESS
    busy = {u.id: u.current_order for u in restarted.list_equipment()}
    assert busy['hematology-analyzer'] == cbc.id
    assert [rx.status for rx in restarted.list_prescriptions(rx_patient.id)] == [
        PrescriptionStatus.DISPENSED, PrescriptionStatus.PENDING,
    ]
    assert restarted.get_inventory_level('AMX-500').quantity == 79

    # ids keep counting from where the previous process stopped
    assert restarted.register_patient({'name': 'Hana Tesfaye', 'age': 30, 'gender': 'F'}).id == 'P00005'
    restarted.upload_result(cbc.id, {'wbc': 6.1})
    restarted.begin_processing(lipid.id)
    restarted.upload_result(lipid.id, {'ldl': 2.9})
    assert restarted.advance(lab.id, Status.WITH_DOCTOR).status == Status.WITH_DOCTOR


def test_rolled_back_lab_orders_are_removed_from_storage():
    engine = new_engine()
    patient = engine.register_patient({'name': 'Sara Yonas', 'age': 34, 'gender': 'F'})
    engine.advance(patient.id, Status.IN_TRIAGE)
    engine.record_vitals(patient.id, VITALS)
    engine.advance(patient.id, Status.WITH_DOCTOR)

    original = engine.journal.patient_saved

    def refuse(p):
        raise RuntimeError('disk full')

    engine.journal.patient_saved = refuse
    with pytest.raises(RuntimeError):
        engine.advance(patient.id, Status.LAB, {'tests': ['CBC']})
    engine.journal.patient_saved = original

    restarted = new_engine()
    assert restarted.list_lab_orders(patient.id) == []
    assert restarted.locate(patient.id) == ['Doctor']
    assert restarted.get_patient(patient.id).status == Status.WITH_DOCTOR
