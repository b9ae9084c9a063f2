"""
Lab order lifecycle and equipment contention.

Orders wait in the Lab department queue until a technician starts them on
their equipment unit.  A unit processes one order at a time: the order's
status and its unit's occupancy change together inside the unit's
exclusive section.

Lifecycle::

    PendingCollection --begin_processing--> InProcess --upload_result--> Resulted
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Iterable, Optional

from django.utils import timezone

from clinic.domain import EquipmentUnit, LabOrder, LabOrderStatus, Priority, QueueEntry
from clinic.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    ResourceBusyError,
    ValidationError,
)
from clinic.services.journal import Journal, NullJournal
from clinic.services.locks import KeyedLocks
from clinic.services.queues import QueueManager
from clinic.services.sequences import IdSequence

logger = logging.getLogger(__name__)


def equipment_from_config(config: dict) -> list[EquipmentUnit]:
    """Build units from the ``CLINIC_LAB_EQUIPMENT`` settings mapping."""
    return [
        EquipmentUnit(
            id=unit_id,
            name=conf.get('name', unit_id),
            tests=tuple(conf.get('tests', ())),
            active=conf.get('active', True),
        )
        for unit_id, conf in config.items()
    ]


class LabOrderTracker:
    def __init__(self, queue: QueueManager, equipment: Iterable[EquipmentUnit] = (), *,
                 timeout: Optional[float] = 2.0, journal: Optional[Journal] = None, clock=timezone.now):
        self.queue = queue
        self.journal = journal or NullJournal()
        self.clock = clock
        self._units: dict[str, EquipmentUnit] = {u.id: u.snapshot() for u in equipment}
        self._orders: dict[str, LabOrder] = {}
        self._lock = threading.Lock()
        self._unit_locks = KeyedLocks('equipment', timeout)
        self._ids = IdSequence('LB-')

    # -- routing ---------------------------------------------------------

    def route(self, test: str, equipment: Optional[str] = None) -> str:
        """Return the unit id that runs ``test``."""
        if not isinstance(test, str) or not test.strip():
            raise ValidationError('test name is required')
        if equipment is not None and not isinstance(equipment, str):
            raise ValidationError('equipment must be a unit id')
        if equipment:
            if equipment not in self._units:
                raise ValidationError(f'unknown equipment unit {equipment}')
            return equipment
        wanted = test.strip().lower()
        for unit in self._units.values():
            if any(t.lower() == wanted for t in unit.tests):
                return unit.id
        raise ValidationError(f'no equipment unit runs {test!r}')

    def check_request(self, test: str, priority, equipment: Optional[str] = None) -> str:
        if priority not in Priority.values:
            raise ValidationError(f'unknown priority {priority!r}')
        unit_id = self.route(test, equipment)
        if not self._units[unit_id].active:
            raise ResourceBusyError(f'{self._units[unit_id].name} is out of service')
        return unit_id

    def set_active(self, unit_id: str, active: bool) -> EquipmentUnit:
        """Take a unit out of service for maintenance, or bring it back."""
        if unit_id not in self._units:
            raise NotFoundError(f'unknown equipment unit {unit_id}')
        with self._unit_locks.hold(unit_id):
            unit = self._units[unit_id]
            unit.active = active
            return unit.snapshot()

    # -- lifecycle -------------------------------------------------------

    def _find(self, order_id: str) -> LabOrder:
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError(f'lab order {order_id} not found')
        return order

    def _commit(self, order: LabOrder) -> LabOrder:
        self.journal.lab_order_saved(order)
        with self._lock:
            self._orders[order.id] = order
        return order.snapshot()

    def create_order(self, patient_id: str, test: str, priority: str = Priority.NORMAL, *,
                     encounter: int = 1, equipment: Optional[str] = None) -> LabOrder:
        unit_id = self.check_request(test, priority, equipment)
        order = LabOrder(
            id=self._ids.next(),
            patient_id=patient_id,
            encounter=encounter,
            test=test.strip(),
            priority=Priority(priority),
            equipment=unit_id,
            ordered_at=self.clock(),
        )
        created = self._commit(order)
        try:
            self.queue.enqueue(patient_id, priority=order.priority, ref=order.id, enqueued_at=order.ordered_at)
        except Exception:
            self.forget(order.id)
            raise
        logger.info('lab order %s (%s) for %s on %s', order.id, order.test, patient_id, unit_id)
        return created

    def forget(self, order_id: str) -> None:
        """Drop an order created by a command that rolled back."""
        order = self._orders.get(order_id)
        if order is None:
            return
        self.queue.discard(order.patient_id, order.id)
        self.journal.lab_order_discarded(order_id)
        with self._lock:
            self._orders.pop(order_id, None)

    def begin_processing(self, order_id: str) -> LabOrder:
        unit_id = self._find(order_id).equipment
        with self._unit_locks.hold(unit_id):
            order = self._orders[order_id]
            if order.status != LabOrderStatus.PENDING_COLLECTION:
                raise IllegalTransitionError(f'lab order {order_id} is {order.status}, not PendingCollection')
            unit = self._units[unit_id]
            if not unit.active:
                raise ResourceBusyError(f'{unit.name} is out of service')
            if unit.current_order is not None:
                raise ResourceBusyError(f'{unit.name} is busy with {unit.current_order}')
            entry = self.queue.discard(order.patient_id, order.id)
            try:
                started = self._commit(replace(order, status=LabOrderStatus.IN_PROCESS, started_at=self.clock()))
            except Exception:
                if entry is not None:
                    self.queue.reinstate(entry)
                raise
            unit.current_order = order_id
            return started

    def upload_result(self, order_id: str, payload: dict) -> LabOrder:
        if not isinstance(payload, dict) or not payload:
            raise ValidationError('result payload must be a non-empty object')
        unit_id = self._find(order_id).equipment
        with self._unit_locks.hold(unit_id):
            order = self._orders[order_id]
            if order.status != LabOrderStatus.IN_PROCESS:
                raise IllegalTransitionError(f'lab order {order_id} is {order.status}, not InProcess')
            resulted = self._commit(replace(
                order, status=LabOrderStatus.RESULTED, result=dict(payload), resulted_at=self.clock(),
            ))
            unit = self._units[unit_id]
            if unit.current_order == order_id:
                unit.current_order = None
            return resulted

    def withdraw(self, patient_id: str) -> list[QueueEntry]:
        """Take every lab queue entry of ``patient_id`` out of the queue."""
        return self.queue.remove(patient_id)

    def restore(self, order: LabOrder) -> None:
        with self._lock:
            self._orders[order.id] = order.snapshot()
        if order.status == LabOrderStatus.IN_PROCESS and order.equipment in self._units:
            self._units[order.equipment].current_order = order.id
        self._ids.observe(order.id)

    # -- queries ---------------------------------------------------------

    def get(self, order_id: str) -> LabOrder:
        return self._find(order_id).snapshot()

    def _all(self) -> list[LabOrder]:
        with self._lock:
            return sorted(self._orders.values(), key=lambda o: (o.ordered_at, o.id))

    def active_orders(self) -> list[LabOrder]:
        return [o.snapshot() for o in self._all() if o.status != LabOrderStatus.RESULTED]

    def orders_for(self, patient_id: str, encounter: Optional[int] = None) -> list[LabOrder]:
        return [
            o.snapshot() for o in self._all()
            if o.patient_id == patient_id and (encounter is None or o.encounter == encounter)
        ]

    def all_resulted(self, patient_id: str, encounter: int) -> bool:
        return all(o.status == LabOrderStatus.RESULTED for o in self.orders_for(patient_id, encounter))

    def equipment(self) -> list[EquipmentUnit]:
        return [u.snapshot() for u in self._units.values()]
