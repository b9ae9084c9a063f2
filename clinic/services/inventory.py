"""
Drug stock counts and expiry.

Each drug has its own exclusive section.  Dispensing, restocking and the
expiry sweep for one drug are serialized against each other while
different drugs proceed in parallel, so ``quantity`` can never be driven
below zero by interleaved callers.

Records are replaced, never edited in place: the new version is handed to
the journal first and only becomes visible once the journal accepted it.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, timedelta
from typing import Iterator, Optional

from clinic.domain import InventoryItem
from clinic.exceptions import (
    DuplicateEntryError,
    ExpiredStockError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from clinic.services.locks import KeyedLocks
from clinic.services.journal import Journal, NullJournal

logger = logging.getLogger(__name__)


class InventoryLedger:
    def __init__(self, *, timeout: Optional[float] = 2.0, default_reorder_level: int = 10,
                 journal: Optional[Journal] = None):
        self.default_reorder_level = default_reorder_level
        self.journal = journal or NullJournal()
        self._items: dict[str, InventoryItem] = {}
        self._catalog_lock = threading.Lock()
        self._locks = KeyedLocks('drug', timeout)

    @contextmanager
    def section(self, drug_id: str, *, bounded: bool = True) -> Iterator[InventoryItem]:
        """Hold the drug's exclusive section and yield its current record."""
        if drug_id not in self._items:
            raise NotFoundError(f'drug {drug_id} not in inventory')
        with self._locks.hold(drug_id, bounded=bounded):
            yield self._items[drug_id]

    def _commit(self, item: InventoryItem) -> InventoryItem:
        self.journal.inventory_item_saved(item)
        self._items[item.drug_id] = item
        return item.snapshot()

    def add_item(self, drug_id: str, name: str, quantity: int = 0, *,
                 expiry_date: Optional[date] = None, reorder_level: Optional[int] = None) -> InventoryItem:
        if not drug_id or not name:
            raise ValidationError('drug id and name are required')
        _check_quantity(quantity)
        item = InventoryItem(
            drug_id=drug_id,
            name=name,
            quantity=quantity,
            expiry_date=expiry_date,
            reorder_level=self.default_reorder_level if reorder_level is None else reorder_level,
        )
        with self._catalog_lock:
            if drug_id in self._items:
                raise DuplicateEntryError(f'drug {drug_id} already stocked')
            return self._commit(item)

    def restock(self, drug_id: str, quantity: int, *, expiry_date: Optional[date] = None) -> InventoryItem:
        """Set the on-hand quantity (and optionally the batch expiry)."""
        _check_quantity(quantity)
        with self.section(drug_id) as item:
            updated = replace(item, quantity=quantity)
            if expiry_date is not None and expiry_date != item.expiry_date:
                updated = replace(updated, expiry_date=expiry_date, flagged_expiring=False)
            logger.info('restocked %s to %d', drug_id, quantity)
            return self._commit(updated)

    def withdraw(self, drug_id: str, units: int, *, today: date) -> InventoryItem:
        """Check expiry and stock, then decrement, in one section."""
        if units < 1:
            raise ValidationError('units must be at least 1')
        with self.section(drug_id) as item:
            if item.is_expired(today):
                raise ExpiredStockError(f'{item.name} expired on {item.expiry_date}')
            if item.quantity < units:
                raise InsufficientStockError(
                    f'{item.name}: {units} requested, {item.quantity} on hand'
                )
            return self._commit(replace(item, quantity=item.quantity - units))

    def put_back(self, drug_id: str, units: int) -> InventoryItem:
        """Reverse a withdrawal whose surrounding command failed."""
        with self.section(drug_id) as item:
            return self._commit(replace(item, quantity=item.quantity + units))

    def flag_expiring(self, *, today: date, threshold_days: int) -> list[InventoryItem]:
        """Flag items expiring within ``threshold_days`` and return them."""
        horizon = today + timedelta(days=threshold_days)
        flagged = []
        for drug_id in sorted(self._items):
            with self.section(drug_id) as item:
                if item.expiry_date is None or item.expiry_date > horizon:
                    continue
                if not item.flagged_expiring:
                    item = self._commit(replace(item, flagged_expiring=True))
                flagged.append(item.snapshot())
        return flagged

    def restore(self, item: InventoryItem) -> None:
        with self._catalog_lock:
            self._items[item.drug_id] = item.snapshot()

    def get(self, drug_id: str) -> InventoryItem:
        with self.section(drug_id) as item:
            return item.snapshot()

    def level(self, drug_id: str) -> int:
        return self.get(drug_id).quantity

    def items(self) -> list[InventoryItem]:
        return [self.get(drug_id) for drug_id in sorted(self._items)]

    def low_stock(self) -> list[InventoryItem]:
        return [item for item in self.items() if item.is_low]

    def __contains__(self, drug_id: str) -> bool:
        return drug_id in self._items


def _check_quantity(quantity) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
        raise ValidationError('quantity must be a non-negative integer')
