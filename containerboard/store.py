"""
In-memory record store: the single source of truth for order records.

Replaced wholesale on a full refresh, patched in place for single-record
mutations. Commits are synchronous, so a render issued after a mutation
returns always observes the new state.
"""
import logging
from typing import Dict, Iterable, List, Optional

from .errors import ValidationError
from .schema import OrderRecord

logger = logging.getLogger(__name__)


class RecordStore:
    """Canonical id -> OrderRecord mapping, kept in store order."""

    def __init__(self, records: Iterable[OrderRecord] = (), containers: Iterable[str] = ()):
        self._records: Dict[str, OrderRecord] = {}
        self._containers: Dict[str, None] = {}
        self.version = 0
        self._listeners: list = []
        if records or containers:
            self.replace_all(records, containers)

    def subscribe(self, callback) -> None:
        """Register a callback invoked with the new version after every commit."""
        self._listeners.append(callback)

    def _committed(self) -> None:
        self.version += 1
        for callback in list(self._listeners):
            try:
                callback(self.version)
            except Exception as e:
                logger.error(f"Error in store listener: {e}", exc_info=True)

    @staticmethod
    def _check(record: OrderRecord) -> None:
        if not isinstance(record, OrderRecord):
            raise ValidationError(f"Store only accepts OrderRecord, got {type(record).__name__}")
        if not record.order_id:
            raise ValidationError("Cannot store an order without an id")

    # ── Reads ────────────────────────────────────────────────────────────

    def get_all(self) -> List[OrderRecord]:
        return list(self._records.values())

    def get(self, order_id: str) -> Optional[OrderRecord]:
        return self._records.get(order_id)

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def registered_containers(self) -> List[str]:
        """Container numbers registered directly, independent of any order."""
        return list(self._containers)

    # ── Writes ───────────────────────────────────────────────────────────

    def replace_all(self, records: Iterable[OrderRecord], containers: Iterable[str] = ()) -> None:
        """Swap in a full snapshot. Validates everything before touching state."""
        fresh: Dict[str, OrderRecord] = {}
        for record in records:
            self._check(record)
            if record.order_id in fresh:
                raise ValidationError(f"Duplicate order id in snapshot: {record.order_id}")
            fresh[record.order_id] = record
        registered = {str(c).strip(): None for c in containers if str(c).strip()}

        self._records = fresh
        self._containers = registered
        logger.info(f"Store replaced: {len(fresh)} orders, {len(registered)} registered containers")
        self._committed()

    def upsert(self, record: OrderRecord) -> None:
        """Insert or overwrite a record; an existing record keeps its position."""
        self._check(record)
        self._records[record.order_id] = record
        self._committed()

    def remove(self, order_id: str) -> bool:
        if order_id not in self._records:
            return False
        del self._records[order_id]
        self._committed()
        return True

    def register_container(self, number: str) -> None:
        number = str(number or "").strip()
        if not number:
            raise ValidationError("Container number is required")
        self._containers[number] = None
        self._committed()
