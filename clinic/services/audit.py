import logging
from typing import Optional, Any, Dict
from clinic.models import AuditEvent

logger = logging.getLogger(__name__)

def log_action(*, operator: Optional[str], action: str, object_type: Optional[str]=None, object_id: Optional[str]=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        operator=(operator or '')[:100],
        action=action,
        object_type=object_type, object_id=object_id,
        detail=detail or {},
    )

def audit(**kwargs) -> None:
    """Like :func:`log_action` but never fails the calling request."""
    try:
        log_action(**kwargs)
    except Exception:
        logger.warning('could not write audit event %s', kwargs.get('action'), exc_info=True)
