"""
Write-through contract between the in-memory engine and durable storage.

Components call the journal inside their own exclusive sections with the
record version they are about to publish; if the journal raises, the
component keeps the previous version.  :class:`NullJournal` is used when
nothing needs to survive the process (tests, scratch engines).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from clinic.domain import InventoryItem, LabOrder, Patient, Prescription, QueueEntry


@dataclass
class StoredState:
    patients: list[Patient] = field(default_factory=list)
    lab_orders: list[LabOrder] = field(default_factory=list)
    prescriptions: list[Prescription] = field(default_factory=list)
    inventory: list[InventoryItem] = field(default_factory=list)
    queue_entries: list[tuple[str, QueueEntry]] = field(default_factory=list)


class Journal(Protocol):
    def patient_saved(self, patient: Patient) -> None: ...

    def lab_order_saved(self, order: LabOrder) -> None: ...

    def lab_order_discarded(self, order_id: str) -> None: ...

    def prescription_saved(self, prescription: Prescription) -> None: ...

    def prescription_discarded(self, prescription_id: str) -> None: ...

    def inventory_item_saved(self, item: InventoryItem) -> None: ...

    def queue_entry_added(self, department: str, entry: QueueEntry) -> None: ...

    def queue_entry_removed(self, department: str, entry: QueueEntry) -> None: ...

    def load(self) -> StoredState: ...


class NullJournal:
    def patient_saved(self, patient):
        pass

    def lab_order_saved(self, order):
        pass

    def lab_order_discarded(self, order_id):
        pass

    def prescription_saved(self, prescription):
        pass

    def prescription_discarded(self, prescription_id):
        pass

    def inventory_item_saved(self, item):
        pass

    def queue_entry_added(self, department, entry):
        pass

    def queue_entry_removed(self, department, entry):
        pass

    def load(self) -> StoredState:
        return StoredState()
