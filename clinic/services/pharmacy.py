"""
Prescription fulfilment against the inventory ledger.

A prescription's status only changes inside the exclusive section of its
drug, so ``dispense`` and ``cancel`` on the same prescription (or two
``dispense`` calls racing for the last units of a drug) are strictly
serialized.  The stock check, the decrement and the status change all
happen in that one section.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Optional

from django.utils import timezone

from clinic.domain import InventoryItem, Prescription, PrescriptionStatus
from clinic.exceptions import IllegalTransitionError, NotFoundError, ValidationError
from clinic.services.inventory import InventoryLedger
from clinic.services.journal import Journal, NullJournal
from clinic.services.sequences import IdSequence

logger = logging.getLogger(__name__)


class PharmacyDispenser:
    def __init__(self, ledger: InventoryLedger, *, journal: Optional[Journal] = None, clock=timezone.now):
        self.ledger = ledger
        self.journal = journal or NullJournal()
        self.clock = clock
        self._prescriptions: dict[str, Prescription] = {}
        self._lock = threading.Lock()
        self._ids = IdSequence('RX-')

    def _drug_of(self, prescription_id: str) -> str:
        rx = self._prescriptions.get(prescription_id)
        if rx is None:
            raise NotFoundError(f'prescription {prescription_id} not found')
        return rx.drug_id

    def _commit(self, rx: Prescription) -> Prescription:
        self.journal.prescription_saved(rx)
        with self._lock:
            self._prescriptions[rx.id] = rx
        return rx.snapshot()

    def check_request(self, drug_id: str, quantity, dosage: str, prescriber: str) -> None:
        if not isinstance(drug_id, str) or drug_id not in self.ledger:
            raise NotFoundError(f'drug {drug_id} not in inventory')
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError('quantity must be a positive integer')
        if not isinstance(dosage, str) or not dosage.strip():
            raise ValidationError('dosage instructions are required')
        if not isinstance(prescriber, str) or not prescriber.strip():
            raise ValidationError('prescriber is required')

    def create_prescription(self, patient_id: str, encounter: int, drug_id: str, quantity: int,
                            dosage: str, prescriber: str) -> Prescription:
        self.check_request(drug_id, quantity, dosage, prescriber)
        rx = Prescription(
            id=self._ids.next(),
            patient_id=patient_id,
            encounter=encounter,
            drug_id=drug_id,
            quantity=quantity,
            dosage=dosage.strip(),
            prescriber=prescriber.strip(),
            created_at=self.clock(),
        )
        return self._commit(rx)

    def dispense(self, prescription_id: str) -> tuple[Prescription, InventoryItem]:
        drug_id = self._drug_of(prescription_id)
        now = self.clock()
        with self.ledger.section(drug_id):
            rx = self._prescriptions[prescription_id]
            if rx.status != PrescriptionStatus.PENDING:
                raise IllegalTransitionError(f'prescription {rx.id} is {rx.status}, not Pending')
            item = self.ledger.withdraw(drug_id, rx.quantity, today=timezone.localdate(now))
            try:
                dispensed = self._commit(replace(rx, status=PrescriptionStatus.DISPENSED, closed_at=now))
            except Exception:
                self.ledger.put_back(drug_id, rx.quantity)
                raise
            logger.info('dispensed %s: %d x %s, %d left', rx.id, rx.quantity, drug_id, item.quantity)
            return dispensed, item

    def cancel(self, prescription_id: str, *, bounded: bool = True) -> Prescription:
        drug_id = self._drug_of(prescription_id)
        with self.ledger.section(drug_id, bounded=bounded):
            rx = self._prescriptions[prescription_id]
            if rx.status != PrescriptionStatus.PENDING:
                raise IllegalTransitionError(f'prescription {rx.id} is {rx.status}, not Pending')
            return self._commit(replace(rx, status=PrescriptionStatus.CANCELLED, closed_at=self.clock()))

    def reopen(self, prescription_id: str) -> None:
        """Undo a dispense or cancel that an enclosing command rolls back."""
        drug_id = self._drug_of(prescription_id)
        with self.ledger.section(drug_id):
            rx = self._prescriptions[prescription_id]
            if rx.status == PrescriptionStatus.DISPENSED:
                self.ledger.put_back(drug_id, rx.quantity)
            self._commit(replace(rx, status=PrescriptionStatus.PENDING, closed_at=None))

    def forget(self, prescription_id: str) -> None:
        """Drop a prescription created by a command that rolled back."""
        self.journal.prescription_discarded(prescription_id)
        with self._lock:
            self._prescriptions.pop(prescription_id, None)

    def restore(self, rx: Prescription) -> None:
        with self._lock:
            self._prescriptions[rx.id] = rx.snapshot()
        self._ids.observe(rx.id)

    def get(self, prescription_id: str) -> Prescription:
        self._drug_of(prescription_id)
        return self._prescriptions[prescription_id].snapshot()

    def pending(self) -> list[Prescription]:
        return [rx.snapshot() for rx in self._all() if rx.status == PrescriptionStatus.PENDING]

    def for_encounter(self, patient_id: str, encounter: Optional[int] = None) -> list[Prescription]:
        return [
            rx.snapshot() for rx in self._all()
            if rx.patient_id == patient_id and (encounter is None or rx.encounter == encounter)
        ]

    def _all(self) -> list[Prescription]:
        with self._lock:
            return sorted(self._prescriptions.values(), key=lambda rx: (rx.created_at, rx.id))
