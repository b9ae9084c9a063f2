from rest_framework.decorators import api_view
from rest_framework.response import Response

from clinic.serializers.common import OperatorSerializer
from clinic.services.audit import audit
from clinic.services.runtime import get_engine


@api_view(['GET'])
def queue_list(request, department):
    engine = get_engine()
    data = []
    for position, entry in enumerate(engine.list_queue(department), start=1):
        patient = engine.registry.find(entry.patient_id)
        item = entry.to_dict()
        item['position'] = position
        item['name'] = patient.name if patient else None
        data.append(item)
    return Response({'ok': True, 'department': department, 'data': data, 'waitingCount': len(data)})


@api_view(['POST'])
def call_next(request):
    s = OperatorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    operator = s.validated_data.get('operator', '')
    patient = get_engine().call_next_for_triage(operator=operator)
    if patient is None:
        return Response({'ok': True, 'data': None})
    audit(operator=operator, action='opd_call_next', object_type='patient', object_id=patient.id)
    return Response({'ok': True, 'data': patient.to_dict()})
