from django.db import connections
from django.http import JsonResponse

from clinic.services.runtime import get_engine


def healthz(request):
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
    except Exception as e:
        return JsonResponse({'ok': False, 'error': str(e)}, status=500)
    engine = get_engine()
    return JsonResponse({'ok': True, 'db': bool(row and row[0] == 1), 'patients': len(engine.registry)})
