import pytest

from clinic.domain import Department, LabOrderStatus, Priority
from clinic.exceptions import IllegalTransitionError, NotFoundError, ResourceBusyError, ValidationError
from clinic.services.lab import LabOrderTracker, equipment_from_config
from clinic.services.queues import QueueManager
from clinic.tests.conftest import EQUIPMENT


@pytest.fixture
def queue():
    return QueueManager(Department.LAB)


@pytest.fixture
def lab(queue):
    return LabOrderTracker(queue, equipment_from_config(EQUIPMENT), timeout=0.2)


def test_routes_by_catalogue(lab):
    assert lab.route('cbc') == 'hematology-analyzer'
    assert lab.route('Lipid Profile') == 'biochemistry-system'
    assert lab.route('ESR', equipment='biochemistry-system') == 'biochemistry-system'
    with pytest.raises(ValidationError):
        lab.route('MRI')
    with pytest.raises(ValidationError):
        lab.route('CBC', equipment='x-ray')


def test_inactive_unit_refuses_new_orders(lab):
    with pytest.raises(ResourceBusyError):
        lab.create_order('P00001', 'Urinalysis')
    lab.set_active('centrifuge-a1', True)
    assert lab.create_order('P00001', 'Urinalysis').equipment == 'centrifuge-a1'


def test_create_order_enqueues_into_lab_queue(lab, queue):
    order = lab.create_order('P00001', 'CBC', Priority.HIGH, encounter=2)
    assert order.status == LabOrderStatus.PENDING_COLLECTION
    assert order.encounter == 2
    assert [(e.patient_id, e.ref) for e in queue.entries()] == [('P00001', order.id)]


def test_lifecycle(lab, queue):
    order = lab.create_order('P00001', 'CBC')
    started = lab.begin_processing(order.id)
    assert started.status == LabOrderStatus.IN_PROCESS
    assert len(queue) == 0
    assert {u.id: u.current_order for u in lab.equipment()}['hematology-analyzer'] == order.id
    done = lab.upload_result(order.id, {'wbc': 6.1, 'hb': 13.2})
    assert done.status == LabOrderStatus.RESULTED
    assert done.result == {'wbc': 6.1, 'hb': 13.2}
    assert {u.id: u.current_order for u in lab.equipment()}['hematology-analyzer'] is None
    assert lab.all_resulted('P00001', 1)


def test_upload_twice_is_illegal(lab):
    order = lab.create_order('P00001', 'CBC')
    lab.begin_processing(order.id)
    lab.upload_result(order.id, {'wbc': 6.1})
    with pytest.raises(IllegalTransitionError):
        lab.upload_result(order.id, {'wbc': 9.9})
    assert lab.get(order.id).result == {'wbc': 6.1}


def test_upload_requires_processing_and_payload(lab):
    order = lab.create_order('P00001', 'CBC')
    with pytest.raises(IllegalTransitionError):
        lab.upload_result(order.id, {'wbc': 6.1})
    lab.begin_processing(order.id)
    with pytest.raises(ValidationError):
        lab.upload_result(order.id, {})
    with pytest.raises(NotFoundError):
        lab.begin_processing('LB-404')


def test_unit_runs_one_order_at_a_time(lab, queue):
    first = lab.create_order('P00001', 'CBC')
    second = lab.create_order('P00002', 'ESR')
    lab.begin_processing(first.id)
    with pytest.raises(ResourceBusyError):
        lab.begin_processing(second.id)
    assert lab.get(second.id).status == LabOrderStatus.PENDING_COLLECTION
    assert [e.ref for e in queue.entries()] == [second.id]
    lab.upload_result(first.id, {'wbc': 6.1})
    assert lab.begin_processing(second.id).status == LabOrderStatus.IN_PROCESS


def test_forget_drops_order_and_queue_entry(lab, queue):
    order = lab.create_order('P00001', 'CBC')
    lab.forget(order.id)
    assert len(queue) == 0
    with pytest.raises(NotFoundError):
        lab.get(order.id)
