"""
Integration tests for the clinic HTTP API.

These exercise the full stack: DRF views, serializers, the engine held by
``clinic.services.runtime`` and the ORM write-through store, using
Django REST Framework's APIClient within the APITestCase base class.
"""
from django.test import override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from clinic.models import AuditEvent, PatientRecord
from clinic.services import events
from clinic.services.runtime import get_engine, reset_engine
from clinic.tests.conftest import stock

VITALS = {'bloodPressure': '118/76', 'temperature': 36.6, 'heartRate': 72, 'weight': 70.5}


@override_settings(CLINIC_NOTIFIER='clinic.services.events.InMemoryNotifier')
class ClinicAPITests(APITestCase):
    def setUp(self) -> None:
        reset_engine()
        self.engine = get_engine()
        stock(self.engine)

    def tearDown(self) -> None:
        reset_engine()

    def register(self, name='Kebede Kassahun', **extra):
        body = {'name': name, 'age': 62, 'gender': 'M', 'phone': '0933445566', 'operator': 'reception'}
        body.update(extra)
        resp = self.client.post('/api/patients/register', body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED, resp.data)
        return resp.data['data']

    def advance(self, patient_id, target, **body):
        return self.client.post(f'/api/patients/{patient_id}/advance', dict(body, target=target), format='json')

    def to_doctor(self, name='Marta Desalegn'):
        patient = self.register(name)
        self.assertEqual(self.advance(patient['id'], 'InTriage').status_code, 200)
        resp = self.client.post(f"/api/patients/{patient['id']}/vitals", VITALS, format='json')
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(self.advance(patient['id'], 'WithDoctor').status_code, 200)
        return patient['id']

    def test_register_and_list(self):
        patient = self.register()
        self.assertEqual(patient['id'], 'P00001')
        self.assertEqual(patient['status'], 'Waiting')
        self.assertTrue(PatientRecord.objects.filter(id='P00001').exists())
        self.assertTrue(AuditEvent.objects.filter(action='patient_register', object_id='P00001').exists())

        resp = self.client.get('/api/patients', {'search': 'kebede'})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data['ok'])
        self.assertEqual([p['id'] for p in resp.data['data']], ['P00001'])

        resp = self.client.get('/api/queues/OPD')
        self.assertEqual(resp.data['data'][0]['name'], 'Kebede Kassahun')
        self.assertEqual(resp.data['data'][0]['position'], 1)

    def test_register_sanitizes_and_validates(self):
        patient = self.register(name='<b>Abebe</b> Bikila')
        self.assertEqual(patient['name'], 'Abebe Bikila')

        resp = self.client.post('/api/patients/register', {'name': 'Abebe', 'gender': 'M'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['error']['code'], 'validation_error')

        resp = self.client.post('/api/patients/register', {'name': 'Abebe', 'age': 200, 'gender': 'M'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data['error']['code'], 'validation_error')

    def test_illegal_transition_is_conflict(self):
        patient = self.register()
        resp = self.advance(patient['id'], 'Lab', tests=[{'test': 'CBC'}])
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data, {'ok': False, 'error': {
            'code': 'illegal_transition', 'message': resp.data['error']['message'],
        }})
        self.assertEqual(self.client.get(f"/api/patients/{patient['id']}").data['data']['status'], 'Waiting')

    def test_unknown_patient_is_404(self):
        resp = self.client.get('/api/patients/P09999')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.data['error']['code'], 'not_found')

    def test_stale_version_is_rejected(self):
        patient = self.register()
        resp = self.advance(patient['id'], 'InTriage', expectedVersion=patient['version'] + 5)
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['error']['code'], 'concurrent_modification')

    def test_call_next_and_vitals(self):
        self.register('Kebede Kassahun')
        self.register('Abebe Bikila', urgent=True)
        resp = self.client.post('/api/opd/call-next', {'operator': 'triage-1'}, format='json')
        self.assertEqual(resp.data['data']['name'], 'Abebe Bikila')
        self.assertEqual(resp.data['data']['status'], 'InTriage')

        resp = self.client.post('/api/patients/P00002/vitals', dict(VITALS, temperature=50), format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        resp = self.client.post(
            '/api/patients/P00002/vitals', dict(VITALS, complaint='<i>Chest</i> pain'), format='json',
        )
        self.assertEqual(resp.data['data']['vitals']['bloodPressure'], '118/76')
        self.assertEqual(resp.data['data']['vitals']['complaint'], 'Chest pain')

        resp = self.client.post('/api/patients/P00002/vitals', VITALS, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)

    def test_lab_flow(self):
        patient_id = self.to_doctor()
        resp = self.advance(patient_id, 'Lab', tests=[{'test': 'CBC', 'priority': 'High'}])
        self.assertEqual(resp.status_code, 200, resp.data)

        resp = self.client.post('/api/lab/orders', {'patientId': patient_id, 'test': 'Lipid Profile'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)

        orders = self.client.get('/api/lab/orders').data['data']
        self.assertEqual([o['test'] for o in orders], ['CBC', 'Lipid Profile'])

        self.assertEqual(self.advance(patient_id, 'WithDoctor').status_code, status.HTTP_409_CONFLICT)
        for order in orders:
            resp = self.client.post(f"/api/lab/orders/{order['id']}/begin", {}, format='json')
            self.assertEqual(resp.data['data']['status'], 'InProcess')
            resp = self.client.post(f"/api/lab/orders/{order['id']}/result", {'result': {'value': 1}}, format='json')
            self.assertEqual(resp.data['data']['status'], 'Resulted')

        resp = self.client.post(f"/api/lab/orders/{orders[0]['id']}/result", {'result': {'value': 2}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(self.advance(patient_id, 'WithDoctor').data['data']['status'], 'WithDoctor')

        kinds = self.engine.notifier.kinds()
        self.assertEqual(kinds.count(events.LAB_RESULT_UPLOADED), 2)

    def test_busy_equipment_is_locked(self):
        patient_id = self.to_doctor()
        self.advance(patient_id, 'Lab', tests=[{'test': 'CBC'}, {'test': 'ESR'}])
        first, second = self.client.get('/api/lab/orders', {'patientId': patient_id}).data['data']
        self.client.post(f"/api/lab/orders/{first['id']}/begin", {}, format='json')
        resp = self.client.post(f"/api/lab/orders/{second['id']}/begin", {}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_423_LOCKED)
        self.assertEqual(resp.data['error']['code'], 'resource_busy')

        units = {u['id']: u for u in self.client.get('/api/lab/equipment').data['data']}
        self.assertTrue(units['hematology-analyzer']['busy'])
        self.assertFalse(units['biochemistry-system']['busy'])

    def test_pharmacy_flow(self):
        patient_id = self.to_doctor()
        resp = self.advance(patient_id, 'Pharmacy', prescriptions=[
            {'drugId': 'PCM-500', 'quantity': 6, 'dosage': '1x2 PRN', 'prescriber': 'Dr. Hagos'},
            {'drugId': 'PCM-500', 'quantity': 7, 'dosage': '1x2 PRN', 'prescriber': 'Dr. Hagos'},
        ])
        self.assertEqual(resp.status_code, 200, resp.data)
        pending = self.client.get('/api/pharmacy/prescriptions').data['data']
        self.assertEqual(len(pending), 2)

        resp = self.client.post(f"/api/pharmacy/prescriptions/{pending[0]['id']}/dispense", {}, format='json')
        self.assertEqual(resp.data['data']['status'], 'Dispensed')
        resp = self.client.post(f"/api/pharmacy/prescriptions/{pending[1]['id']}/dispense", {}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['error']['code'], 'insufficient_stock')

        self.assertEqual(self.advance(patient_id, 'Discharged').status_code, status.HTTP_409_CONFLICT)
        resp = self.client.post(f"/api/pharmacy/prescriptions/{pending[1]['id']}/cancel", {}, format='json')
        self.assertEqual(resp.data['data']['status'], 'Cancelled')
        self.assertEqual(self.advance(patient_id, 'Discharged').data['data']['status'], 'Discharged')

        self.assertIn(events.INVENTORY_LOW, self.engine.notifier.kinds())
        self.assertEqual(self.client.get('/api/inventory/PCM-500').data['data']['quantity'], 6)

    def test_restock_and_inventory(self):
        resp = self.client.post('/api/inventory/PCM-500/restock', {'quantity': 200, 'expiryDate': '2031-01-31'},
                                format='json')
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data['data']['quantity'], 200)
        self.assertEqual(resp.data['data']['expiryDate'], '2031-01-31')

        resp = self.client.post('/api/inventory/PCM-500/restock', {'quantity': -1}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        resp = self.client.post('/api/inventory/XYZ/restock', {'quantity': 1}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

        ids = [i['drugId'] for i in self.client.get('/api/inventory').data['data']]
        self.assertEqual(ids, ['AMX-500', 'OMP-20', 'PCM-500'])

    def test_failsafe_discharge(self):
        patient_id = self.to_doctor()
        resp = self.client.post(f'/api/patients/{patient_id}/discharge-failsafe',
                                {'reason': 'transferred', 'operator': 'nurse'}, format='json')
        self.assertEqual(resp.data['data']['status'], 'Discharged')
        detail = self.client.get(f'/api/patients/{patient_id}').data['data']
        self.assertEqual(detail['queues'], [])
        self.assertTrue(detail['transitionHistory'][-1]['exceptional'])
        self.assertTrue(AuditEvent.objects.filter(action='patient_discharge_failsafe').exists())

    def test_dashboard_and_health(self):
        self.register()
        self.to_doctor()
        data = self.client.get('/api/dashboard').data['data']
        self.assertEqual(data['totalPatients'], 2)
        self.assertEqual(data['queues']['Doctor'], 1)
        resp = self.client.get('/healthz')
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()['ok'])

    def test_unknown_queue_is_404(self):
        resp = self.client.get('/api/queues/Radiology')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
