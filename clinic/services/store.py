"""
Django ORM implementation of the engine journal.

Each callback runs in its own transaction so a record either lands
completely (a patient together with its vitals and new transitions) or not
at all; a database error propagates to the engine, which then keeps the
previous in-memory version.
"""
from __future__ import annotations

import logging

from django.db import transaction

from clinic.domain import (
    InventoryItem,
    LabOrder,
    Patient,
    Prescription,
    QueueEntry,
    StatusChange,
    Vitals,
)
from clinic.models import (
    InventoryRecord,
    LabOrderRecord,
    PatientRecord,
    PrescriptionRecord,
    QueueEntryRecord,
    StatusTransition,
    VitalsRecord,
)
from clinic.services.journal import StoredState

logger = logging.getLogger(__name__)


class OrmStore:
    @transaction.atomic
    def patient_saved(self, patient: Patient) -> None:
        record, _ = PatientRecord.objects.update_or_create(
            id=patient.id,
            defaults={
                'name': patient.name,
                'age': patient.age,
                'gender': patient.gender,
                'phone': patient.phone,
                'status': patient.status,
                'last_visit': patient.last_visit,
                'encounter': patient.encounter,
                'urgent': patient.urgent,
                'version': patient.version,
            },
        )
        if patient.vitals is not None:
            VitalsRecord.objects.get_or_create(
                patient=record,
                encounter=patient.encounter,
                defaults={
                    'blood_pressure': patient.vitals.blood_pressure,
                    'temperature': patient.vitals.temperature,
                    'heart_rate': patient.vitals.heart_rate,
                    'weight': patient.vitals.weight,
                    'complaint': patient.vitals.complaint,
                    'recorded_at': patient.vitals.recorded_at,
                },
            )
        # history only ever grows, so rows past the stored count are new
        stored = StatusTransition.objects.filter(patient=record).count()
        StatusTransition.objects.bulk_create([
            StatusTransition(
                patient=record,
                from_status=change.from_status,
                to_status=change.to_status,
                encounter=change.encounter,
                timestamp=change.timestamp,
                operator=change.operator,
                reason=change.reason,
                exceptional=change.exceptional,
            )
            for change in patient.history[stored:]
        ])

    def lab_order_saved(self, order: LabOrder) -> None:
        LabOrderRecord.objects.update_or_create(
            id=order.id,
            defaults={
                'patient_id': order.patient_id,
                'encounter': order.encounter,
                'test': order.test,
                'priority': order.priority,
                'equipment': order.equipment,
                'status': order.status,
                'result': order.result,
                'ordered_at': order.ordered_at,
                'started_at': order.started_at,
                'resulted_at': order.resulted_at,
            },
        )

    def lab_order_discarded(self, order_id: str) -> None:
        LabOrderRecord.objects.filter(id=order_id).delete()

    def prescription_saved(self, prescription: Prescription) -> None:
        PrescriptionRecord.objects.update_or_create(
            id=prescription.id,
            defaults={
                'patient_id': prescription.patient_id,
                'encounter': prescription.encounter,
                'drug_id': prescription.drug_id,
                'quantity': prescription.quantity,
                'dosage': prescription.dosage,
                'prescriber': prescription.prescriber,
                'status': prescription.status,
                'created_at': prescription.created_at,
                'closed_at': prescription.closed_at,
            },
        )

    def prescription_discarded(self, prescription_id: str) -> None:
        PrescriptionRecord.objects.filter(id=prescription_id).delete()

    def inventory_item_saved(self, item: InventoryItem) -> None:
        InventoryRecord.objects.update_or_create(
            drug_id=item.drug_id,
            defaults={
                'name': item.name,
                'quantity': item.quantity,
                'expiry_date': item.expiry_date,
                'reorder_level': item.reorder_level,
                'flagged_expiring': item.flagged_expiring,
            },
        )

    def queue_entry_added(self, department: str, entry: QueueEntry) -> None:
        QueueEntryRecord.objects.create(
            department=department,
            patient_id=entry.patient_id,
            ref=entry.ref or '',
            priority=entry.priority,
            enqueued_at=entry.enqueued_at,
            seq=entry.seq,
        )

    def queue_entry_removed(self, department: str, entry: QueueEntry) -> None:
        QueueEntryRecord.objects.filter(
            department=department, patient_id=entry.patient_id, ref=entry.ref or '',
        ).delete()

    def load(self) -> StoredState:
        state = StoredState()
        patients = PatientRecord.objects.prefetch_related('vitals', 'transitions').order_by('id')
        for record in patients:
            vitals = next((v for v in record.vitals.all() if v.encounter == record.encounter), None)
            state.patients.append(Patient(
                id=record.id,
                name=record.name,
                age=record.age,
                gender=record.gender,
                phone=record.phone,
                status=record.status,
                last_visit=record.last_visit,
                encounter=record.encounter,
                urgent=record.urgent,
                version=record.version,
                vitals=Vitals(
                    blood_pressure=vitals.blood_pressure,
                    temperature=vitals.temperature,
                    heart_rate=vitals.heart_rate,
                    weight=vitals.weight,
                    complaint=vitals.complaint,
                    recorded_at=vitals.recorded_at,
                ) if vitals else None,
                history=[
                    StatusChange(
                        patient_id=record.id,
                        from_status=t.from_status,
                        to_status=t.to_status,
                        timestamp=t.timestamp,
                        encounter=t.encounter,
                        operator=t.operator,
                        reason=t.reason,
                        exceptional=t.exceptional,
                    )
                    for t in record.transitions.all()
                ],
            ))
        state.inventory = [
            InventoryItem(
                drug_id=r.drug_id,
                name=r.name,
                quantity=r.quantity,
                expiry_date=r.expiry_date,
                reorder_level=r.reorder_level,
                flagged_expiring=r.flagged_expiring,
            )
            for r in InventoryRecord.objects.order_by('drug_id')
        ]
        state.lab_orders = [
            LabOrder(
                id=r.id,
                patient_id=r.patient_id,
                encounter=r.encounter,
                test=r.test,
                priority=r.priority,
                equipment=r.equipment,
                status=r.status,
                result=r.result,
                ordered_at=r.ordered_at,
                started_at=r.started_at,
                resulted_at=r.resulted_at,
            )
            for r in LabOrderRecord.objects.all()
        ]
        state.prescriptions = [
            Prescription(
                id=r.id,
                patient_id=r.patient_id,
                encounter=r.encounter,
                drug_id=r.drug_id,
                quantity=r.quantity,
                dosage=r.dosage,
                prescriber=r.prescriber,
                status=r.status,
                created_at=r.created_at,
                closed_at=r.closed_at,
            )
            for r in PrescriptionRecord.objects.all()
        ]
        state.queue_entries = [
            (r.department, QueueEntry(
                patient_id=r.patient_id,
                enqueued_at=r.enqueued_at,
                priority=r.priority,
                ref=r.ref or None,
                seq=r.seq,
            ))
            for r in QueueEntryRecord.objects.order_by('department', 'seq')
        ]
        logger.debug('loaded %d patients from the database', len(state.patients))
        return state
