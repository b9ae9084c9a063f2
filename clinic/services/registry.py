"""
Patient identity and demographics.

The registry only stores and finds patients.  Status, vitals and history
are changed by :class:`~clinic.services.workflow.WorkflowEngine` while it
holds the patient's lock.
"""
from __future__ import annotations

import threading
from typing import Iterator, Optional

from clinic.domain import Patient
from clinic.exceptions import DuplicateEntryError, NotFoundError
from clinic.services.sequences import IdSequence


class PatientRegistry:
    def __init__(self):
        self._patients: dict[str, Patient] = {}
        self._lock = threading.Lock()
        self._ids = IdSequence('P', width=5)

    def next_id(self) -> str:
        return self._ids.next()

    def add(self, patient: Patient) -> Patient:
        with self._lock:
            if patient.id in self._patients:
                raise DuplicateEntryError(f'patient {patient.id} already registered')
            self._patients[patient.id] = patient
        self._ids.observe(patient.id)
        return patient

    def put(self, patient: Patient) -> None:
        """Publish a new version of an already registered patient."""
        with self._lock:
            if patient.id not in self._patients:
                raise NotFoundError(f'patient {patient.id} not found')
            self._patients[patient.id] = patient

    def get(self, patient_id: str) -> Patient:
        patient = self._patients.get(patient_id)
        if patient is None:
            raise NotFoundError(f'patient {patient_id} not found')
        return patient

    def find(self, patient_id: str) -> Optional[Patient]:
        return self._patients.get(patient_id)

    def all(self) -> list[Patient]:
        with self._lock:
            return list(self._patients.values())

    def search(self, term: str) -> list[Patient]:
        """Match by id, phone or (case-insensitive) name fragment."""
        term = (term or '').strip().lower()
        if not term:
            return self.all()
        return [
            p for p in self.all()
            if term == p.id.lower() or term in p.name.lower() or (p.phone and term in p.phone)
        ]

    def __len__(self) -> int:
        return len(self._patients)

    def __iter__(self) -> Iterator[Patient]:
        return iter(self.all())
