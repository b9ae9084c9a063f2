"""
Django admin registrations for the clinic's stored records.

The engine owns live state; edits made here are only picked up when the
process restarts and reloads from the database.
"""

from django.contrib import admin

from .models import (
    AuditEvent,
    InventoryRecord,
    LabOrderRecord,
    PatientRecord,
    PrescriptionRecord,
    QueueEntryRecord,
    StatusTransition,
    VitalsRecord,
)


@admin.register(PatientRecord)
class PatientRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'age', 'gender', 'status', 'encounter', 'urgent', 'last_visit')
    list_filter = ('status', 'gender', 'urgent')
    search_fields = ('id', 'name', 'phone')


@admin.register(VitalsRecord)
class VitalsRecordAdmin(admin.ModelAdmin):
    list_display = ('patient', 'encounter', 'blood_pressure', 'temperature', 'heart_rate', 'weight')
    search_fields = ('patient__id', 'patient__name', 'complaint')


@admin.register(StatusTransition)
class StatusTransitionAdmin(admin.ModelAdmin):
    list_display = ('patient', 'from_status', 'to_status', 'encounter', 'operator', 'exceptional', 'timestamp')
    list_filter = ('to_status', 'exceptional')
    search_fields = ('patient__id', 'operator', 'reason')


@admin.register(QueueEntryRecord)
class QueueEntryRecordAdmin(admin.ModelAdmin):
    list_display = ('department', 'patient_id', 'ref', 'priority', 'enqueued_at', 'seq')
    list_filter = ('department', 'priority')


@admin.register(LabOrderRecord)
class LabOrderRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'test', 'priority', 'equipment', 'status', 'ordered_at')
    list_filter = ('status', 'priority', 'equipment')
    search_fields = ('id', 'patient__id', 'test')


@admin.register(PrescriptionRecord)
class PrescriptionRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'drug', 'quantity', 'status', 'prescriber', 'created_at')
    list_filter = ('status',)
    search_fields = ('id', 'patient__id', 'prescriber')


@admin.register(InventoryRecord)
class InventoryRecordAdmin(admin.ModelAdmin):
    list_display = ('drug_id', 'name', 'quantity', 'reorder_level', 'expiry_date', 'flagged_expiring')
    list_filter = ('flagged_expiring',)
    search_fields = ('drug_id', 'name')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'operator', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('operator', 'object_id')
