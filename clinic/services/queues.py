"""
Priority-ordered waiting lines, one per department.

A :class:`QueueManager` is the single source of truth for "who is next" in
its department.  Entries are ordered by priority tier (``High`` before
``Normal``), then by enqueue time, then by insertion sequence so that
entries stamped with the same instant still leave in arrival order.

Every operation on one queue runs inside that queue's exclusive section;
different departments never block each other.
"""
from __future__ import annotations

import bisect
import itertools
import logging
from typing import Optional

from django.utils import timezone

from clinic.domain import Department, Priority, QueueEntry
from clinic.exceptions import DuplicateEntryError, NotFoundError, ValidationError
from clinic.services.journal import Journal, NullJournal
from clinic.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


class QueueManager:
    def __init__(self, department: str, *, timeout: Optional[float] = 2.0,
                 journal: Optional[Journal] = None, clock=timezone.now):
        self.department = department
        self.journal = journal or NullJournal()
        self.clock = clock
        self._entries: list[QueueEntry] = []
        self._keys: set[tuple] = set()
        self._seq = itertools.count(1)
        self._locks = KeyedLocks(f'{department} queue', timeout)

    def _section(self, *, bounded: bool = True):
        return self._locks.hold(self.department, bounded=bounded)

    def _insert(self, entry: QueueEntry) -> None:
        self.journal.queue_entry_added(self.department, entry)
        bisect.insort(self._entries, entry, key=QueueEntry.sort_key)
        self._keys.add(entry.key)

    def _pop(self, index: int) -> QueueEntry:
        self.journal.queue_entry_removed(self.department, self._entries[index])
        entry = self._entries.pop(index)
        self._keys.discard(entry.key)
        return entry

    def enqueue(self, patient_id: str, *, priority: str = Priority.NORMAL,
                ref: Optional[str] = None, enqueued_at=None) -> QueueEntry:
        try:
            priority = Priority(priority)
        except ValueError:
            raise ValidationError(f'unknown priority {priority!r}') from None
        entry = QueueEntry(
            patient_id=patient_id,
            enqueued_at=enqueued_at or self.clock(),
            priority=priority,
            ref=ref,
        )
        with self._section():
            if entry.key in self._keys:
                raise DuplicateEntryError(f'{patient_id} is already in the {self.department} queue')
            entry.seq = next(self._seq)
            self._insert(entry)
        logger.debug('queued %s in %s (%s)', patient_id, self.department, entry.priority)
        return entry.snapshot()

    def reinstate(self, entry: QueueEntry) -> None:
        """Put back an entry removed earlier, keeping its original place."""
        with self._section():
            if entry.key in self._keys:
                raise DuplicateEntryError(f'{entry.patient_id} is already in the {self.department} queue')
            self._insert(entry.snapshot())

    def restore(self, entry: QueueEntry) -> None:
        """Load an entry from storage without journaling it again."""
        journal, self.journal = self.journal, NullJournal()
        try:
            self.reinstate(entry)
        finally:
            self.journal = journal
        self._seq = itertools.count(max((e.seq for e in self._entries), default=0) + 1)

    def dequeue_next(self) -> Optional[QueueEntry]:
        """Remove and return the head, or ``None`` when nobody is waiting."""
        with self._section():
            if not self._entries:
                return None
            return self._pop(0)

    def remove(self, patient_id: str, *, bounded: bool = True) -> list[QueueEntry]:
        """Remove every entry for ``patient_id``; no-op when absent."""
        with self._section(bounded=bounded):
            removed = []
            for index in reversed(range(len(self._entries))):
                if self._entries[index].patient_id == patient_id:
                    removed.append(self._pop(index))
            removed.reverse()
            return removed

    def discard(self, patient_id: str, ref: Optional[str] = None) -> Optional[QueueEntry]:
        with self._section():
            for index, entry in enumerate(self._entries):
                if entry.key == (patient_id, ref):
                    return self._pop(index)
            return None

    def peek(self) -> Optional[QueueEntry]:
        with self._section():
            return self._entries[0].snapshot() if self._entries else None

    def entries(self) -> list[QueueEntry]:
        with self._section():
            return [e.snapshot() for e in self._entries]

    def position(self, patient_id: str) -> Optional[int]:
        with self._section():
            for index, entry in enumerate(self._entries, start=1):
                if entry.patient_id == patient_id:
                    return index
            return None

    def __contains__(self, patient_id: str) -> bool:
        return self.position(patient_id) is not None

    def __len__(self) -> int:
        return len(self._entries)


class QueueBoard:
    """The set of department queues of the clinic."""

    def __init__(self, *, timeout: Optional[float] = 2.0, journal: Optional[Journal] = None,
                 clock=timezone.now):
        self._queues = {
            dept.value: QueueManager(dept.value, timeout=timeout, journal=journal, clock=clock)
            for dept in Department
        }

    def __getitem__(self, department: str) -> QueueManager:
        try:
            return self._queues[str(department)]
        except KeyError:
            raise NotFoundError(f'no queue for department {department}') from None

    def __iter__(self):
        return iter(self._queues.values())

    def locate(self, patient_id: str) -> list[str]:
        """Departments whose queue currently holds ``patient_id``."""
        return [q.department for q in self._queues.values() if patient_id in q]

    def remove_everywhere(self, patient_id: str, *, bounded: bool = True) -> list[tuple[str, QueueEntry]]:
        removed = []
        for queue in self._queues.values():
            removed.extend((queue.department, e) for e in queue.remove(patient_id, bounded=bounded))
        return removed
