"""
In-memory entities of the patient-flow engine.

The engine owns one authoritative copy of each entity; callers only ever
receive snapshots produced by :meth:`snapshot`, so mutating a returned
object never leaks back into shared state.  Enumerations are Django
``TextChoices`` so the ORM records in :mod:`clinic.models` reuse them.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from django.db import models


class Status(models.TextChoices):
    WAITING = 'Waiting', 'Waiting'
    IN_TRIAGE = 'InTriage', 'In Triage'
    WITH_DOCTOR = 'WithDoctor', 'With Doctor'
    LAB = 'Lab', 'Lab'
    PHARMACY = 'Pharmacy', 'Pharmacy'
    DISCHARGED = 'Discharged', 'Discharged'


class Priority(models.TextChoices):
    HIGH = 'High', 'High'
    NORMAL = 'Normal', 'Normal'


class Gender(models.TextChoices):
    MALE = 'M', 'Male'
    FEMALE = 'F', 'Female'


class Department(models.TextChoices):
    OPD = 'OPD', 'Outpatient Department'
    DOCTOR = 'Doctor', 'Doctor'
    LAB = 'Lab', 'Laboratory'


class LabOrderStatus(models.TextChoices):
    PENDING_COLLECTION = 'PendingCollection', 'Pending Collection'
    IN_PROCESS = 'InProcess', 'In Process'
    RESULTED = 'Resulted', 'Resulted'


class PrescriptionStatus(models.TextChoices):
    PENDING = 'Pending', 'Pending'
    DISPENSED = 'Dispensed', 'Dispensed'
    CANCELLED = 'Cancelled', 'Cancelled'


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class Snapshot:
    """Mixin giving entities a detached deep copy."""

    def snapshot(self):
        return copy.deepcopy(self)


@dataclass
class Vitals(Snapshot):
    blood_pressure: str
    temperature: float
    heart_rate: int
    weight: float
    complaint: str = ''
    recorded_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'bloodPressure': self.blood_pressure,
            'temperature': self.temperature,
            'heartRate': self.heart_rate,
            'weight': self.weight,
            'complaint': self.complaint,
            'recordedAt': _iso(self.recorded_at),
        }


@dataclass
class StatusChange(Snapshot):
    """One applied edge of a patient's status machine."""
    patient_id: str
    from_status: Optional[str]
    to_status: str
    timestamp: datetime
    encounter: int
    operator: str = ''
    reason: str = ''
    exceptional: bool = False

    def to_dict(self) -> dict:
        return {
            'from': self.from_status,
            'to': self.to_status,
            'timestamp': _iso(self.timestamp),
            'encounter': self.encounter,
            'operator': self.operator,
            'reason': self.reason,
            'exceptional': self.exceptional,
        }


@dataclass
class Patient(Snapshot):
    id: str
    name: str
    age: int
    gender: str
    phone: str = ''
    status: str = Status.WAITING
    last_visit: Optional[datetime] = None
    encounter: int = 1
    urgent: bool = False
    version: int = 0
    vitals: Optional[Vitals] = None
    history: list[StatusChange] = field(default_factory=list)

    def to_dict(self, *, with_history: bool = False) -> dict:
        data = {
            'id': self.id,
            'name': self.name,
            'age': self.age,
            'gender': self.gender,
            'phone': self.phone,
            'status': self.status,
            'lastVisit': _iso(self.last_visit),
            'encounter': self.encounter,
            'urgent': self.urgent,
            'version': self.version,
            'vitals': self.vitals.to_dict() if self.vitals else None,
        }
        if with_history:
            data['transitionHistory'] = [h.to_dict() for h in self.history]
        return data


@dataclass
class QueueEntry(Snapshot):
    patient_id: str
    enqueued_at: datetime
    priority: str = Priority.NORMAL
    ref: Optional[str] = None
    seq: int = 0

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.patient_id, self.ref)

    def sort_key(self) -> tuple:
        tier = 0 if self.priority == Priority.HIGH else 1
        return (tier, self.enqueued_at, self.seq)

    def to_dict(self) -> dict:
        return {
            'patientId': self.patient_id,
            'enqueuedAt': _iso(self.enqueued_at),
            'priority': self.priority,
            'ref': self.ref,
        }


@dataclass
class LabOrder(Snapshot):
    id: str
    patient_id: str
    encounter: int
    test: str
    priority: str
    equipment: str
    status: str = LabOrderStatus.PENDING_COLLECTION
    result: Optional[dict[str, Any]] = None
    ordered_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    resulted_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'encounter': self.encounter,
            'test': self.test,
            'priority': self.priority,
            'equipment': self.equipment,
            'status': self.status,
            'result': self.result,
            'orderedAt': _iso(self.ordered_at),
            'startedAt': _iso(self.started_at),
            'resultedAt': _iso(self.resulted_at),
        }


@dataclass
class Prescription(Snapshot):
    id: str
    patient_id: str
    encounter: int
    drug_id: str
    quantity: int
    dosage: str
    prescriber: str
    status: str = PrescriptionStatus.PENDING
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PrescriptionStatus.PENDING

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'patientId': self.patient_id,
            'encounter': self.encounter,
            'drugId': self.drug_id,
            'quantity': self.quantity,
            'dosage': self.dosage,
            'prescriber': self.prescriber,
            'status': self.status,
            'createdAt': _iso(self.created_at),
            'closedAt': _iso(self.closed_at),
        }


@dataclass
class InventoryItem(Snapshot):
    drug_id: str
    name: str
    quantity: int
    expiry_date: Optional[date] = None
    reorder_level: int = 10
    flagged_expiring: bool = False

    def is_expired(self, today: date) -> bool:
        return self.expiry_date is not None and self.expiry_date < today

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.reorder_level

    def to_dict(self) -> dict:
        return {
            'drugId': self.drug_id,
            'name': self.name,
            'quantity': self.quantity,
            'expiryDate': _iso(self.expiry_date),
            'reorderLevel': self.reorder_level,
            'low': self.is_low,
            'flaggedExpiring': self.flagged_expiring,
        }


@dataclass
class EquipmentUnit(Snapshot):
    id: str
    name: str
    tests: tuple[str, ...] = ()
    active: bool = True
    current_order: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'tests': list(self.tests),
            'active': self.active,
            'busy': self.current_order is not None,
            'currentOrder': self.current_order,
        }


@dataclass
class DomainEvent:
    kind: str
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'timestamp': _iso(self.timestamp), **self.data}
