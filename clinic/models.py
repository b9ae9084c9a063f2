"""
Database models for the clinic backend.

The engine keeps its working state in memory; these tables are its
write-through store (see :mod:`clinic.services.store`) and are read back
when the process starts.  Choice lists reuse the enumerations of
:mod:`clinic.domain` so stored values and in-memory values never drift.
"""
from __future__ import annotations

from django.db import models

from clinic.domain import (
    Department,
    Gender,
    LabOrderStatus,
    Priority,
    PrescriptionStatus,
    Status,
)


class PatientRecord(models.Model):
    id = models.CharField(max_length=20, primary_key=True, help_text="Patient id such as 'P00001'")
    name = models.CharField(max_length=255)
    age = models.PositiveIntegerField()
    gender = models.CharField(max_length=1, choices=Gender.choices)
    phone = models.CharField(max_length=32, blank=True)
    # filtered on by the patient list and dashboard
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.WAITING, db_index=True)
    last_visit = models.DateTimeField(null=True, blank=True)
    encounter = models.PositiveIntegerField(default=1)
    urgent = models.BooleanField(default=False)
    version = models.PositiveIntegerField(default=0)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class VitalsRecord(models.Model):
    """Vitals taken in triage, one set per encounter."""
    patient = models.ForeignKey(PatientRecord, related_name='vitals', on_delete=models.CASCADE)
    encounter = models.PositiveIntegerField()
    blood_pressure = models.CharField(max_length=10)
    temperature = models.FloatField()
    heart_rate = models.PositiveIntegerField()
    weight = models.FloatField()
    complaint = models.TextField(blank=True, default='')
    recorded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = [('patient', 'encounter')]

    def __str__(self) -> str:
        return f"{self.patient_id} #{self.encounter}: {self.blood_pressure}"


class StatusTransition(models.Model):
    """Records an applied status change of a patient."""
    patient = models.ForeignKey(PatientRecord, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    encounter = models.PositiveIntegerField(default=1)
    timestamp = models.DateTimeField()
    operator = models.CharField(max_length=100, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    exceptional = models.BooleanField(default=False)

    class Meta:
        ordering = ['timestamp', 'id']

    def __str__(self) -> str:
        return f"{self.patient_id}: {self.from_status} → {self.to_status}"


class QueueEntryRecord(models.Model):
    """A live entry of a department queue; deleted when it leaves the queue."""
    department = models.CharField(max_length=10, choices=Department.choices)
    patient_id = models.CharField(max_length=20, db_index=True)
    ref = models.CharField(max_length=20, blank=True)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.NORMAL)
    enqueued_at = models.DateTimeField()
    seq = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = [('department', 'patient_id', 'ref')]
        indexes = [models.Index(fields=['department', 'seq'])]

    def __str__(self) -> str:
        return f"{self.department}: {self.patient_id} ({self.priority})"


class LabOrderRecord(models.Model):
    id = models.CharField(max_length=20, primary_key=True)
    patient = models.ForeignKey(PatientRecord, related_name='lab_orders', on_delete=models.CASCADE)
    encounter = models.PositiveIntegerField(default=1)
    test = models.CharField(max_length=100)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.NORMAL)
    equipment = models.CharField(max_length=50)
    status = models.CharField(
        max_length=20, choices=LabOrderStatus.choices, default=LabOrderStatus.PENDING_COLLECTION, db_index=True,
    )
    result = models.JSONField(null=True, blank=True)
    ordered_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    resulted_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.id} {self.test} ({self.status})"


class InventoryRecord(models.Model):
    drug_id = models.CharField(max_length=50, primary_key=True)
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=0)
    expiry_date = models.DateField(null=True, blank=True)
    reorder_level = models.PositiveIntegerField(default=10)
    flagged_expiring = models.BooleanField(default=False)

    def __str__(self) -> str:
        return f"{self.name}: {self.quantity}"


class PrescriptionRecord(models.Model):
    id = models.CharField(max_length=20, primary_key=True)
    patient = models.ForeignKey(PatientRecord, related_name='prescriptions', on_delete=models.CASCADE)
    encounter = models.PositiveIntegerField(default=1)
    drug = models.ForeignKey(InventoryRecord, related_name='prescriptions', on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    dosage = models.CharField(max_length=255)
    prescriber = models.CharField(max_length=100)
    status = models.CharField(
        max_length=20, choices=PrescriptionStatus.choices, default=PrescriptionStatus.PENDING, db_index=True,
    )
    created_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"{self.id} {self.drug_id} x{self.quantity} ({self.status})"


class AuditEvent(models.Model):
    operator = models.CharField(max_length=100, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.CharField(max_length=50, blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id', 'created_at']),
        ]
