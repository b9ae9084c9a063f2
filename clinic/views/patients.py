"""
Patient intake and status-flow views.

Every status change goes through the engine; these views only translate
JSON into engine calls and snapshots back into JSON.  Domain errors are
turned into structured responses by ``clinic.exceptions.api_exception_handler``.
"""
from __future__ import annotations

from rest_framework.decorators import api_view
from rest_framework.response import Response

from clinic.serializers.patients import (
    AdvanceSerializer,
    FailsafeSerializer,
    PatientListQuerySerializer,
    RegisterPatientSerializer,
    VitalsSerializer,
)
from clinic.services.audit import audit
from clinic.services.runtime import get_engine


@api_view(['POST'])
def register_patient(request):
    s = RegisterPatientSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    operator = s.validated_data.get('operator', '')
    patient = get_engine().register_patient(s.demographics(), urgent=s.validated_data['urgent'], operator=operator)
    audit(operator=operator, action='patient_register', object_type='patient', object_id=patient.id,
          detail={'urgent': patient.urgent})
    return Response({'ok': True, 'data': patient.to_dict()}, status=201)


@api_view(['GET'])
def list_patients(request):
    q = PatientListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    patients = get_engine().list_patients(
        status=q.validated_data.get('status'),
        search=q.validated_data.get('search') or None,
    )
    return Response({'ok': True, 'data': [p.to_dict() for p in patients], 'total': len(patients)})


@api_view(['GET'])
def patient_detail(request, patient_id):
    engine = get_engine()
    data = engine.get_patient(patient_id).to_dict(with_history=True)
    data['queues'] = engine.locate(patient_id)
    data['labOrders'] = [o.to_dict() for o in engine.list_lab_orders(patient_id)]
    data['prescriptions'] = [rx.to_dict() for rx in engine.list_prescriptions(patient_id)]
    return Response({'ok': True, 'data': data})


@api_view(['POST'])
def advance_patient(request, patient_id):
    s = AdvanceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    operator = s.validated_data.get('operator', '')
    patient = get_engine().advance(
        patient_id,
        s.validated_data['target'],
        s.payload(),
        expected_version=s.validated_data.get('expectedVersion'),
        operator=operator,
    )
    audit(operator=operator, action='patient_advance', object_type='patient', object_id=patient_id,
          detail={'to': patient.status, 'version': patient.version})
    return Response({'ok': True, 'data': patient.to_dict()})


@api_view(['POST'])
def record_vitals(request, patient_id):
    s = VitalsSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = get_engine().record_vitals(patient_id, s.vitals())
    audit(operator=s.validated_data.get('operator', ''), action='vitals_record', object_type='patient',
          object_id=patient_id, detail={'encounter': patient.encounter})
    return Response({'ok': True, 'data': patient.to_dict()})


@api_view(['POST'])
def discharge_failsafe(request, patient_id):
    s = FailsafeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    operator = s.validated_data.get('operator', '')
    reason = s.validated_data.get('reason', '')
    patient = get_engine().discharge_failsafe(patient_id, reason=reason, operator=operator)
    audit(operator=operator, action='patient_discharge_failsafe', object_type='patient', object_id=patient_id,
          detail={'reason': reason})
    return Response({'ok': True, 'data': patient.to_dict()})
