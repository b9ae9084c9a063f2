from rest_framework.decorators import api_view
from rest_framework.response import Response

from clinic.serializers.common import OperatorSerializer
from clinic.serializers.lab import LabOrderCreateSerializer, LabOrderQuerySerializer, LabResultSerializer
from clinic.services.audit import audit
from clinic.services.runtime import get_engine


@api_view(['GET', 'POST'])
def lab_orders(request):
    engine = get_engine()
    if request.method == 'GET':
        q = LabOrderQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        patient_id = q.validated_data.get('patientId')
        orders = engine.list_lab_orders(patient_id) if patient_id else engine.list_active_lab_orders()
        return Response({'ok': True, 'data': [o.to_dict() for o in orders]})
    s = LabOrderCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = engine.create_lab_order(
        s.validated_data['patientId'],
        s.validated_data['test'],
        s.validated_data.get('priority'),
        equipment=s.validated_data.get('equipment') or None,
    )
    audit(operator=s.validated_data.get('operator', ''), action='lab_order_create', object_type='lab_order',
          object_id=order.id, detail={'patientId': order.patient_id, 'test': order.test})
    return Response({'ok': True, 'data': order.to_dict()}, status=201)


@api_view(['GET'])
def lab_equipment(request):
    return Response({'ok': True, 'data': [u.to_dict() for u in get_engine().list_equipment()]})


@api_view(['POST'])
def begin_processing(request, order_id):
    s = OperatorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = get_engine().begin_processing(order_id)
    audit(operator=s.validated_data.get('operator', ''), action='lab_order_begin', object_type='lab_order',
          object_id=order_id, detail={'equipment': order.equipment})
    return Response({'ok': True, 'data': order.to_dict()})


@api_view(['POST'])
def upload_result(request, order_id):
    s = LabResultSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    order = get_engine().upload_result(order_id, s.validated_data['result'])
    audit(operator=s.validated_data.get('operator', ''), action='lab_order_result', object_type='lab_order',
          object_id=order_id)
    return Response({'ok': True, 'data': order.to_dict()})
