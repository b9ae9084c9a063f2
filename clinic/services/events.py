"""
Outbound domain events.

The engine hands events to an :class:`EventNotifier` after it has released
its locks.  Delivery is fire-and-forget: the engine logs a failed publish
and carries on, it never waits for the presentation layer to acknowledge.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings

from clinic.domain import DomainEvent, InventoryItem, LabOrder, Prescription, StatusChange

logger = logging.getLogger(__name__)

PATIENT_STATUS_CHANGED = 'PatientStatusChanged'
LAB_RESULT_UPLOADED = 'LabResultUploaded'
PRESCRIPTION_DISPENSED = 'PrescriptionDispensed'
INVENTORY_LOW = 'InventoryLow'
INVENTORY_EXPIRING = 'InventoryExpiring'


class EventNotifier(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


class ChannelsNotifier:
    """Broadcast events to the Channels group the WebSocket consumers join."""

    def __init__(self, group: Optional[str] = None):
        self.group = group or getattr(settings, 'CLINIC_EVENTS_GROUP', 'clinic.events')

    def publish(self, event: DomainEvent) -> None:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        async_to_sync(channel_layer.group_send)(self.group, {'type': 'clinic.event', 'event': event.to_dict()})


class InMemoryNotifier:
    """Keeps published events in a list; handy for scripts and tests."""

    def __init__(self):
        self.events: list[DomainEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self.events.append(event)

    def kinds(self) -> list[str]:
        with self._lock:
            return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> list[DomainEvent]:
        with self._lock:
            return [e for e in self.events if e.kind == kind]


def patient_status_changed(change: StatusChange) -> DomainEvent:
    return DomainEvent(PATIENT_STATUS_CHANGED, change.timestamp, {
        'patientId': change.patient_id,
        'from': change.from_status,
        'to': change.to_status,
        'exceptional': change.exceptional,
    })


def lab_result_uploaded(order: LabOrder, encounter_complete: bool) -> DomainEvent:
    return DomainEvent(LAB_RESULT_UPLOADED, order.resulted_at, {
        'orderId': order.id,
        'patientId': order.patient_id,
        'test': order.test,
        'encounterComplete': encounter_complete,
    })


def prescription_dispensed(rx: Prescription, item: InventoryItem) -> DomainEvent:
    return DomainEvent(PRESCRIPTION_DISPENSED, rx.closed_at, {
        'prescriptionId': rx.id,
        'patientId': rx.patient_id,
        'drugId': rx.drug_id,
        'quantity': rx.quantity,
        'remaining': item.quantity,
    })


def inventory_low(item: InventoryItem, when) -> DomainEvent:
    return DomainEvent(INVENTORY_LOW, when, {
        'drugId': item.drug_id,
        'name': item.name,
        'quantity': item.quantity,
        'reorderLevel': item.reorder_level,
    })


def inventory_expiring(item: InventoryItem, when) -> DomainEvent:
    return DomainEvent(INVENTORY_EXPIRING, when, {
        'drugId': item.drug_id,
        'name': item.name,
        'expiryDate': item.expiry_date.isoformat() if item.expiry_date else None,
        'quantity': item.quantity,
    })
