"""
Process-wide engine instance.

Views, consumers and management commands all talk to the one engine
returned by :func:`get_engine`; it is built lazily from settings and
loaded from the configured store the first time it is asked for.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from django.conf import settings
from django.utils.module_loading import import_string

from clinic.services.lab import equipment_from_config
from clinic.services.workflow import WorkflowEngine

logger = logging.getLogger(__name__)

_engine: Optional[WorkflowEngine] = None
_lock = threading.Lock()


def build_engine() -> WorkflowEngine:
    store = import_string(settings.CLINIC_STORE)()
    notifier = import_string(settings.CLINIC_NOTIFIER)()
    engine = WorkflowEngine(
        equipment=equipment_from_config(getattr(settings, 'CLINIC_LAB_EQUIPMENT', {})),
        journal=store,
        notifier=notifier,
        lock_timeout=settings.CLINIC_LOCK_TIMEOUT,
        low_stock_threshold=settings.CLINIC_LOW_STOCK_THRESHOLD,
    )
    return engine.load()


def get_engine() -> WorkflowEngine:
    global _engine
    if _engine is None:
        with _lock:
            if _engine is None:
                _engine = build_engine()
                logger.info('clinic engine ready (store=%s)', settings.CLINIC_STORE)
    return _engine


def reset_engine() -> None:
    """Drop the current engine; the next :func:`get_engine` rebuilds it."""
    global _engine
    with _lock:
        _engine = None
