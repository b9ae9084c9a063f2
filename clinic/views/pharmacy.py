from rest_framework.decorators import api_view
from rest_framework.response import Response

from clinic.serializers.common import OperatorSerializer
from clinic.serializers.pharmacy import PrescriptionQuerySerializer, RestockSerializer
from clinic.services.audit import audit
from clinic.services.runtime import get_engine


@api_view(['GET'])
def prescriptions(request):
    q = PrescriptionQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    engine = get_engine()
    patient_id = q.validated_data.get('patientId')
    items = engine.list_prescriptions(patient_id) if patient_id else engine.list_pending_prescriptions()
    return Response({'ok': True, 'data': [rx.to_dict() for rx in items]})


@api_view(['POST'])
def dispense(request, prescription_id):
    s = OperatorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    rx = get_engine().dispense(prescription_id)
    audit(operator=s.validated_data.get('operator', ''), action='prescription_dispense', object_type='prescription',
          object_id=prescription_id, detail={'drugId': rx.drug_id, 'quantity': rx.quantity})
    return Response({'ok': True, 'data': rx.to_dict()})


@api_view(['POST'])
def cancel(request, prescription_id):
    s = OperatorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    rx = get_engine().cancel_prescription(prescription_id)
    audit(operator=s.validated_data.get('operator', ''), action='prescription_cancel', object_type='prescription',
          object_id=prescription_id)
    return Response({'ok': True, 'data': rx.to_dict()})


@api_view(['GET'])
def inventory_list(request):
    return Response({'ok': True, 'data': [item.to_dict() for item in get_engine().list_inventory()]})


@api_view(['GET'])
def inventory_detail(request, drug_id):
    return Response({'ok': True, 'data': get_engine().get_inventory_level(drug_id).to_dict()})


@api_view(['POST'])
def restock(request, drug_id):
    s = RestockSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    item = get_engine().restock(drug_id, s.validated_data['quantity'], s.validated_data.get('expiryDate'))
    audit(operator=s.validated_data.get('operator', ''), action='inventory_restock', object_type='drug',
          object_id=drug_id, detail={'quantity': item.quantity})
    return Response({'ok': True, 'data': item.to_dict()})
