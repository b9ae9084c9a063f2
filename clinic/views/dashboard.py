from rest_framework.decorators import api_view
from rest_framework.response import Response

from clinic.services.runtime import get_engine


@api_view(['GET'])
def dashboard(request):
    return Response({'ok': True, 'data': get_engine().dashboard()})
