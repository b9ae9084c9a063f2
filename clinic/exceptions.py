"""
Domain errors raised by the clinic engine and the unified API exception
handler that turns them (and ordinary DRF errors) into the structured
``{'ok': False, 'error': {'code', 'message'}}`` response shape.
"""
import logging

from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class ClinicError(Exception):
    """Base class for every error the engine reports to its caller."""
    code = 'clinic_error'
    status_code = 409

    def __init__(self, message: str = '', **detail):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail

    def as_dict(self) -> dict:
        return {'code': self.code, 'message': self.message}


class ValidationError(ClinicError):
    code = 'validation_error'
    status_code = 400


class NotFoundError(ClinicError):
    code = 'not_found'
    status_code = 404


class IllegalTransitionError(ClinicError):
    code = 'illegal_transition'


class PreconditionNotMetError(ClinicError):
    code = 'precondition_not_met'


class DuplicateEntryError(ClinicError):
    code = 'duplicate_entry'


class ResourceBusyError(ClinicError):
    code = 'resource_busy'
    status_code = 423


class InsufficientStockError(ClinicError):
    code = 'insufficient_stock'


class ExpiredStockError(ClinicError):
    code = 'expired_stock'


class ConcurrentModificationError(ClinicError):
    code = 'concurrent_modification'


def api_exception_handler(exc, context):
    if isinstance(exc, ClinicError):
        return Response({'ok': False, 'error': exc.as_dict()}, status=exc.status_code)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled error in %s', context.get('view'))
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    code = ValidationError.code if isinstance(exc, DRFValidationError) else 'api_error'
    return Response({'ok': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code)
