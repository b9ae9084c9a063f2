"""
Patient-flow orchestration.

:class:`WorkflowEngine` is the single process-wide owner of patient status.
Every status change goes through :meth:`WorkflowEngine.advance` (or the
failsafe discharge) while the patient's lock is held, so a patient is never
observed in two states or two department queues at once.

Commands are all-or-nothing.  Side effects on queues, lab orders and
prescriptions register an undo step as they are applied; if anything later
in the command fails, including the final write of the patient record, the
undo steps run in reverse and the error propagates to the caller.
Events are published after the patient's lock has been released.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Iterable, Optional

from django.utils import timezone

from clinic.domain import (
    DomainEvent,
    EquipmentUnit,
    InventoryItem,
    LabOrder,
    LabOrderStatus,
    Patient,
    Prescription,
    QueueEntry,
    Department,
    Status,
    StatusChange,
)
from clinic.exceptions import (
    ClinicError,
    ConcurrentModificationError,
    IllegalTransitionError,
    PreconditionNotMetError,
    ValidationError,
)
from clinic.services import events
from clinic.services.events import EventNotifier, InMemoryNotifier
from clinic.services.inventory import InventoryLedger
from clinic.services.journal import Journal, NullJournal
from clinic.services.lab import LabOrderTracker
from clinic.services.locks import KeyedLocks
from clinic.services.pharmacy import PharmacyDispenser
from clinic.services.queues import QueueBoard
from clinic.services.registry import PatientRegistry
from clinic.services.validation import (
    clean_demographics,
    clean_lab_requests,
    clean_prescriptions,
    clean_vitals,
    priority_for,
)

logger = logging.getLogger(__name__)

# Edges reachable through advance(); the failsafe discharge bypasses this.
TRANSITIONS = {
    Status.WAITING: [Status.IN_TRIAGE],
    Status.IN_TRIAGE: [Status.WITH_DOCTOR],
    Status.WITH_DOCTOR: [Status.LAB, Status.PHARMACY, Status.DISCHARGED],
    Status.LAB: [Status.WITH_DOCTOR],
    Status.PHARMACY: [Status.DISCHARGED],
    Status.DISCHARGED: [Status.WAITING],
}


def _can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, [])


class _UndoLog:
    """Compensating steps of a command that is still in flight."""

    def __init__(self):
        self._steps: list[tuple[Callable, tuple]] = []

    def add(self, step: Callable, *args) -> None:
        self._steps.append((step, args))

    def replay(self) -> None:
        for step, args in reversed(self._steps):
            try:
                step(*args)
            except Exception:
                logger.exception('undo step %s%r failed', getattr(step, '__name__', step), args)
        self._steps.clear()


class WorkflowEngine:
    def __init__(self, *, equipment: Iterable[EquipmentUnit] = (), journal: Optional[Journal] = None,
                 notifier: Optional[EventNotifier] = None, lock_timeout: Optional[float] = 2.0,
                 low_stock_threshold: int = 10, clock=timezone.now):
        self.journal = journal or NullJournal()
        self.notifier = notifier or InMemoryNotifier()
        self.clock = clock
        self.registry = PatientRegistry()
        self.queues = QueueBoard(timeout=lock_timeout, journal=self.journal, clock=clock)
        self.ledger = InventoryLedger(
            timeout=lock_timeout, default_reorder_level=low_stock_threshold, journal=self.journal,
        )
        self.lab = LabOrderTracker(
            self.queues[Department.LAB], equipment, timeout=lock_timeout, journal=self.journal, clock=clock,
        )
        self.pharmacy = PharmacyDispenser(self.ledger, journal=self.journal, clock=clock)
        self._patient_locks = KeyedLocks('patient', lock_timeout)
        self._handlers = {
            (Status.WAITING, Status.IN_TRIAGE): self._start_triage,
            (Status.IN_TRIAGE, Status.WITH_DOCTOR): self._send_to_doctor,
            (Status.WITH_DOCTOR, Status.LAB): self._order_tests,
            (Status.WITH_DOCTOR, Status.PHARMACY): self._prescribe,
            (Status.WITH_DOCTOR, Status.DISCHARGED): self._discharge_from_doctor,
            (Status.LAB, Status.WITH_DOCTOR): self._return_from_lab,
            (Status.PHARMACY, Status.DISCHARGED): self._release_from_pharmacy,
            (Status.DISCHARGED, Status.WAITING): self._readmit,
        }

    def load(self) -> 'WorkflowEngine':
        """Rebuild in-memory state from the journal's storage."""
        state = self.journal.load()
        for patient in state.patients:
            self.registry.add(patient)
        for item in state.inventory:
            self.ledger.restore(item)
        for order in state.lab_orders:
            self.lab.restore(order)
        for rx in state.prescriptions:
            self.pharmacy.restore(rx)
        for department, entry in state.queue_entries:
            self.queues[department].restore(entry)
        logger.info(
            'loaded %d patients, %d lab orders, %d prescriptions, %d drugs, %d queue entries',
            len(state.patients), len(state.lab_orders), len(state.prescriptions),
            len(state.inventory), len(state.queue_entries),
        )
        return self

    # -- helpers ---------------------------------------------------------

    def _publish(self, pending: list[DomainEvent]) -> None:
        for event in pending:
            try:
                self.notifier.publish(event)
            except Exception:
                logger.warning('could not publish %s event', event.kind, exc_info=True)

    def _save(self, patient: Patient) -> Patient:
        self.journal.patient_saved(patient)
        self.registry.put(patient)
        return patient

    def _move(self, patient: Patient, target: str, *, operator: str = '', reason: str = '',
              exceptional: bool = False, **fields) -> tuple[Patient, StatusChange]:
        now = self.clock()
        encounter = fields.get('encounter', patient.encounter)
        change = StatusChange(
            patient_id=patient.id,
            from_status=patient.status,
            to_status=target,
            timestamp=now,
            encounter=encounter,
            operator=operator,
            reason=reason,
            exceptional=exceptional,
        )
        updated = replace(
            patient,
            status=target,
            version=patient.version + 1,
            history=patient.history + [change],
            **fields,
        )
        return self._save(updated), change

    def _leave_doctor_queue(self, patient: Patient, undo: _UndoLog) -> None:
        queue = self.queues[Department.DOCTOR]
        entry = queue.discard(patient.id)
        if entry is not None:
            undo.add(queue.reinstate, entry)

    # -- edge side effects -----------------------------------------------

    def _start_triage(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        queue = self.queues[Department.OPD]
        entry = queue.discard(patient.id)
        if entry is not None:
            undo.add(queue.reinstate, entry)
        return {}

    def _send_to_doctor(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        if patient.vitals is None:
            raise PreconditionNotMetError(f'vitals for {patient.id} must be recorded before the doctor review')
        queue = self.queues[Department.DOCTOR]
        queue.enqueue(patient.id, priority=priority_for(patient.urgent))
        undo.add(queue.discard, patient.id)
        return {}

    def _order_tests(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        requests = clean_lab_requests(payload, priority_for(patient.urgent))
        for request in requests:
            self.lab.check_request(request['test'], request['priority'], request['equipment'])
        self._leave_doctor_queue(patient, undo)
        for request in requests:
            order = self.lab.create_order(
                patient.id, request['test'], request['priority'],
                encounter=patient.encounter, equipment=request['equipment'],
            )
            undo.add(self.lab.forget, order.id)
        return {}

    def _prescribe(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        items = clean_prescriptions(payload)
        for item in items:
            self.pharmacy.check_request(item['drug_id'], item['quantity'], item['dosage'], item['prescriber'])
        self._leave_doctor_queue(patient, undo)
        for item in items:
            rx = self.pharmacy.create_prescription(patient.id, patient.encounter, **item)
            undo.add(self.pharmacy.forget, rx.id)
        return {}

    def _discharge_from_doctor(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        self._leave_doctor_queue(patient, undo)
        return {}

    def _return_from_lab(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        if not self.lab.all_resulted(patient.id, patient.encounter):
            waiting = [
                o.id for o in self.lab.orders_for(patient.id, patient.encounter)
                if o.status != LabOrderStatus.RESULTED
            ]
            raise PreconditionNotMetError(f'lab orders still open for {patient.id}: {", ".join(waiting)}')
        return {}

    def _release_from_pharmacy(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        still_open = [rx.id for rx in self.pharmacy.for_encounter(patient.id, patient.encounter) if rx.is_open]
        if still_open:
            raise PreconditionNotMetError(f'prescriptions still pending for {patient.id}: {", ".join(still_open)}')
        return {}

    def _readmit(self, patient: Patient, payload: dict, undo: _UndoLog) -> dict:
        urgent = bool(payload.get('urgent', False))
        now = self.clock()
        queue = self.queues[Department.OPD]
        queue.enqueue(patient.id, priority=priority_for(urgent), enqueued_at=now)
        undo.add(queue.discard, patient.id)
        return {'encounter': patient.encounter + 1, 'vitals': None, 'urgent': urgent, 'last_visit': now}

    # -- commands --------------------------------------------------------

    def register_patient(self, demographics: dict, urgent: bool = False, *, operator: str = '') -> Patient:
        fields = clean_demographics(demographics)
        now = self.clock()
        patient_id = self.registry.next_id()
        change = StatusChange(patient_id, None, Status.WAITING, now, 1, operator=operator, reason='registered')
        patient = Patient(
            id=patient_id, status=Status.WAITING, last_visit=now, encounter=1,
            urgent=bool(urgent), version=1, history=[change], **fields,
        )
        queue = self.queues[Department.OPD]
        with self._patient_locks.hold(patient_id):
            queue.enqueue(patient_id, priority=priority_for(patient.urgent), enqueued_at=now)
            try:
                self.journal.patient_saved(patient)
                self.registry.add(patient)
            except Exception:
                queue.discard(patient_id)
                raise
            snapshot = patient.snapshot()
        logger.info('registered %s (%s)', patient_id, 'urgent' if patient.urgent else 'normal')
        self._publish([events.patient_status_changed(change)])
        return snapshot

    def advance(self, patient_id: str, target_status: str, payload: Optional[dict] = None, *,
                expected_version: Optional[int] = None, operator: str = '') -> Patient:
        try:
            target = Status(target_status)
        except ValueError:
            raise ValidationError(f'unknown status {target_status!r}') from None
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError('payload must be an object')
        with self._patient_locks.hold(patient_id):
            patient = self.registry.get(patient_id)
            if expected_version is not None and expected_version != patient.version:
                raise ConcurrentModificationError(
                    f'{patient_id} is at version {patient.version}, not {expected_version}'
                )
            if not _can_transition(patient.status, target):
                raise IllegalTransitionError(f'cannot move {patient_id} from {patient.status} to {target}')
            undo = _UndoLog()
            try:
                fields = self._handlers[(patient.status, target)](patient, payload or {}, undo)
                updated, change = self._move(patient, target, operator=operator, **fields)
            except Exception:
                undo.replay()
                raise
            snapshot = updated.snapshot()
        logger.info('%s: %s -> %s', patient_id, change.from_status, change.to_status)
        self._publish([events.patient_status_changed(change)])
        return snapshot

    def record_vitals(self, patient_id: str, vitals: dict) -> Patient:
        with self._patient_locks.hold(patient_id):
            patient = self.registry.get(patient_id)
            if patient.status != Status.IN_TRIAGE:
                raise IllegalTransitionError(f'vitals can only be recorded in triage, {patient_id} is {patient.status}')
            if patient.vitals is not None:
                raise IllegalTransitionError(
                    f'vitals already recorded for {patient_id} encounter {patient.encounter}'
                )
            recorded = clean_vitals(vitals, self.clock())
            updated = self._save(replace(patient, vitals=recorded, version=patient.version + 1))
            return updated.snapshot()

    def discharge_failsafe(self, patient_id: str, reason: str = '', operator: str = '') -> Patient:
        """Force ``Discharged`` from any state, waiting as long as it takes."""
        with self._patient_locks.hold(patient_id, bounded=False):
            patient = self.registry.get(patient_id)
            if patient.status == Status.DISCHARGED:
                return patient.snapshot()
            undo = _UndoLog()
            try:
                for department, entry in self.queues.remove_everywhere(patient_id, bounded=False):
                    undo.add(self.queues[department].reinstate, entry)
                for rx in self.pharmacy.for_encounter(patient_id, patient.encounter):
                    if not rx.is_open:
                        continue
                    try:
                        self.pharmacy.cancel(rx.id, bounded=False)
                    except ClinicError as exc:
                        logger.warning('failsafe discharge of %s left %s open: %s', patient_id, rx.id, exc)
                        continue
                    undo.add(self.pharmacy.reopen, rx.id)
                updated, change = self._move(
                    patient, Status.DISCHARGED, operator=operator, reason=reason, exceptional=True,
                )
            except Exception:
                undo.replay()
                raise
            snapshot = updated.snapshot()
        logger.warning('failsafe discharge of %s from %s: %s', patient_id, change.from_status, reason or '-')
        self._publish([events.patient_status_changed(change)])
        return snapshot

    def call_next_for_triage(self, *, operator: str = '') -> Optional[Patient]:
        """Advance the head of the OPD queue to ``InTriage``.

        When another terminal takes the same head first, the next one in
        line is tried instead.
        """
        queue = self.queues[Department.OPD]
        for _ in range(len(queue) + 1):
            entry = queue.peek()
            if entry is None:
                return None
            try:
                return self.advance(entry.patient_id, Status.IN_TRIAGE, operator=operator)
            except IllegalTransitionError:
                continue
        return None

    def create_lab_order(self, patient_id: str, test: str, priority: Optional[str] = None,
                         equipment: Optional[str] = None) -> LabOrder:
        with self._patient_locks.hold(patient_id):
            patient = self.registry.get(patient_id)
            if patient.status != Status.LAB:
                raise IllegalTransitionError(f'lab orders need the patient in Lab, {patient_id} is {patient.status}')
            return self.lab.create_order(
                patient_id, test, priority or priority_for(patient.urgent),
                encounter=patient.encounter, equipment=equipment,
            )

    def _encounter_open(self, order: LabOrder) -> bool:
        patient = self.registry.get(order.patient_id)
        return patient.encounter == order.encounter and patient.status != Status.DISCHARGED

    def begin_processing(self, order_id: str) -> LabOrder:
        order = self.lab.get(order_id)
        with self._patient_locks.hold(order.patient_id):
            if not self._encounter_open(order):
                raise IllegalTransitionError(
                    f'lab order {order_id} belongs to a closed encounter of {order.patient_id}'
                )
            return self.lab.begin_processing(order_id)

    def upload_result(self, order_id: str, payload: dict) -> LabOrder:
        order = self.lab.upload_result(order_id, payload)
        complete = self.lab.all_resulted(order.patient_id, order.encounter)
        self._publish([events.lab_result_uploaded(order, complete)])
        return order

    def set_equipment_active(self, unit_id: str, active: bool) -> EquipmentUnit:
        return self.lab.set_active(unit_id, active)

    def dispense(self, prescription_id: str) -> Prescription:
        rx, item = self.pharmacy.dispense(prescription_id)
        pending = [events.prescription_dispensed(rx, item)]
        if item.is_low:
            logger.info('%s is low: %d left, reorder at %d', item.drug_id, item.quantity, item.reorder_level)
            pending.append(events.inventory_low(item, rx.closed_at))
        self._publish(pending)
        return rx

    def cancel_prescription(self, prescription_id: str) -> Prescription:
        return self.pharmacy.cancel(prescription_id)

    def add_drug(self, drug_id: str, name: str, quantity: int = 0, *,
                 expiry_date: Optional[date] = None, reorder_level: Optional[int] = None) -> InventoryItem:
        return self.ledger.add_item(
            drug_id, name, quantity, expiry_date=expiry_date, reorder_level=reorder_level,
        )

    def restock(self, drug_id: str, quantity: int, expiry_date: Optional[date] = None) -> InventoryItem:
        return self.ledger.restock(drug_id, quantity, expiry_date=expiry_date)

    def sweep_expiring(self, threshold_days: int, today: Optional[date] = None) -> list[InventoryItem]:
        """Flag stock expiring within ``threshold_days`` and announce it."""
        now = self.clock()
        flagged = self.ledger.flag_expiring(
            today=today or timezone.localdate(now), threshold_days=threshold_days,
        )
        self._publish([events.inventory_expiring(item, now) for item in flagged])
        return flagged

    # -- queries ---------------------------------------------------------

    def get_patient(self, patient_id: str) -> Patient:
        return self.registry.get(patient_id).snapshot()

    def list_patients(self, status: Optional[str] = None, search: Optional[str] = None) -> list[Patient]:
        if status is not None and status not in Status.values:
            raise ValidationError(f'unknown status {status!r}')
        found = self.registry.search(search) if search else self.registry.all()
        return [
            p.snapshot() for p in sorted(found, key=lambda p: p.id)
            if status is None or p.status == status
        ]

    def list_queue(self, department: str) -> list[QueueEntry]:
        return self.queues[department].entries()

    def locate(self, patient_id: str) -> list[str]:
        self.registry.get(patient_id)
        return self.queues.locate(patient_id)

    def get_lab_order(self, order_id: str) -> LabOrder:
        return self.lab.get(order_id)

    def list_active_lab_orders(self) -> list[LabOrder]:
        """Orders still in the lab; uncollected orders of closed encounters are left out."""
        return [
            o for o in self.lab.active_orders()
            if o.status == LabOrderStatus.IN_PROCESS or self._encounter_open(o)
        ]

    def list_lab_orders(self, patient_id: str) -> list[LabOrder]:
        return self.lab.orders_for(patient_id)

    def list_equipment(self) -> list[EquipmentUnit]:
        return self.lab.equipment()

    def get_prescription(self, prescription_id: str) -> Prescription:
        return self.pharmacy.get(prescription_id)

    def list_pending_prescriptions(self) -> list[Prescription]:
        return self.pharmacy.pending()

    def list_prescriptions(self, patient_id: str) -> list[Prescription]:
        return self.pharmacy.for_encounter(patient_id)

    def get_inventory_level(self, drug_id: str) -> InventoryItem:
        return self.ledger.get(drug_id)

    def list_inventory(self) -> list[InventoryItem]:
        return self.ledger.items()

    def dashboard(self) -> dict[str, Any]:
        counts = {status: 0 for status in Status.values}
        for patient in self.registry.all():
            counts[patient.status] += 1
        stock = self.ledger.items()
        equipment = self.lab.equipment()
        return {
            'patients': counts,
            'totalPatients': sum(counts.values()),
            'queues': {queue.department: len(queue) for queue in self.queues},
            'activeLabOrders': len(self.list_active_lab_orders()),
            'pendingPrescriptions': len(self.pharmacy.pending()),
            'lowStock': [item.drug_id for item in stock if item.is_low],
            'expiringStock': [item.drug_id for item in stock if item.flagged_expiring],
            'equipmentBusy': sum(1 for unit in equipment if unit.current_order),
            'equipmentOutOfService': sum(1 for unit in equipment if not unit.active),
        }
