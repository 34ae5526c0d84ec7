"""
Mutation coordinator: the only writer of the record store.

Protocol for every remote-backed mutation:
  1. validate locally (no remote call on failure)
  2. stage the change on a copy of the record
  3. call the remote endpoint
  4. success → commit the server's canonical record, refresh views
     failure → discard the staged copy, notify once, re-raise

Edit sessions (add / edit / duplicate) stage form input until submission.
Only one session is active at a time.
"""
import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from .errors import (
    DashboardError,
    NotFound,
    OperationFailed,
    RecordBusy,
    ValidationError,
)
from .events import EventBus, Notifier
from .schema import (
    DEFAULT_DELIMITER,
    OrderRecord,
    OrderStatus,
    coerce_field,
    format_date,
    split_containers,
)
from .store import RecordStore
from .transitions import KanbanTransitions

logger = logging.getLogger(__name__)

FIELD_LABELS = {
    "customer": "customer",
    "document_number": "document number",
    "address": "address",
    "action_type": "action type",
    "containers": "containers",
}


class BusyRegistry:
    """Per-record in-flight flags shared by every mutation on an existing order."""

    def __init__(self):
        self._ids: Set[str] = set()

    def is_busy(self, order_id: str) -> bool:
        return order_id in self._ids

    @contextmanager
    def hold(self, order_id: str):
        if order_id in self._ids:
            raise RecordBusy()
        self._ids.add(order_id)
        try:
            yield
        finally:
            self._ids.discard(order_id)

    def __len__(self) -> int:
        return len(self._ids)


class EditSession:
    """
    Staged form state for an add, edit or duplicate.

    ``fields`` holds python-typed attribute values; nothing reaches the store
    until ``submit`` succeeds.
    """

    def __init__(self, coordinator: "MutationCoordinator", mode: str, fields: Dict[str, Any],
                 order_id: str = "", source_id: str = ""):
        self.coordinator = coordinator
        self.mode = mode  # "add" | "edit" | "duplicate"
        self.fields = fields
        self.order_id = order_id
        self.source_id = source_id

    def set(self, name: str, value: Any) -> None:
        if name == "order_id":
            raise ValidationError("The order id is assigned by the server")
        self.fields[name] = coerce_field(name, value, self.coordinator.delimiter)

    def append_note(self, note: str) -> None:
        note = (note or "").strip()
        if note:
            self.fields["notes"] = f"{self.fields.get('notes', '')}\n- {note}"

    def staged(self) -> OrderRecord:
        return OrderRecord(**self.fields)

    async def submit(self) -> OrderRecord:
        return await self.coordinator.submit(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "order_id": self.order_id,
            "source_id": self.source_id,
            "fields": self.staged().to_dict(include_id=False),
        }


class MutationCoordinator:
    """Orchestrates every state-changing operation against the remote endpoint."""

    def __init__(
        self,
        client,
        store: RecordStore,
        notifier: Notifier,
        bus: Optional[EventBus] = None,
        delimiter: str = DEFAULT_DELIMITER,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.client = client
        self.store = store
        self.notifier = notifier
        self.bus = bus or notifier.bus
        self.delimiter = delimiter
        self.clock = clock
        self.busy = BusyRegistry()
        self.session: Optional[EditSession] = None
        self.transitions = KanbanTransitions(self)

    # ── Shared plumbing ──────────────────────────────────────────────────

    def _require(self, order_id: str) -> OrderRecord:
        record = self.store.get(order_id)
        if record is None:
            raise NotFound(f"Order {order_id} not found")
        return record

    def _validate(self, record: OrderRecord) -> None:
        missing = record.missing_required()
        if missing:
            labels = ", ".join(FIELD_LABELS.get(name, name) for name in missing)
            raise ValidationError(f"Missing required fields: {labels}")

    def canonical_record(self, data: Any, staged: OrderRecord) -> OrderRecord:
        """
        The record to commit after a confirmed call.

        A full record echoed by the server replaces the staged copy outright.
        A bare confirmation (no data, or only an id) commits the staged copy.
        """
        if isinstance(data, dict) and set(data) - {"id"}:
            try:
                record = OrderRecord.from_dict(data, self.delimiter)
            except ValidationError as e:
                raise OperationFailed(f"Server returned an invalid order: {e.user_message}")
            if not record.order_id:
                record = replace(record, order_id=staged.order_id)
        elif isinstance(data, dict) and data.get("id"):
            record = replace(staged, order_id=str(data["id"]))
        elif isinstance(data, (str, int)) and data != "" and not staged.order_id:
            record = replace(staged, order_id=str(data))
        else:
            record = staged

        if not record.order_id:
            raise OperationFailed("Server did not return an order id")
        return record

    def commit(self, record: OrderRecord) -> None:
        self.store.upsert(record)
        logger.info(f"Committed order {record.order_id} ({record.status.value})")
        self.refresh(record.order_id)

    def refresh(self, order_id: Optional[str] = None) -> None:
        """Signal that every derived view must be re-derived from the store."""
        self.bus.emit("store_changed", version=self.store.version, order_id=order_id)

    def fail(self, label: str, error: DashboardError) -> None:
        """The single user-visible notification for a failed mutation."""
        severity = "warning" if isinstance(error, RecordBusy) else "error"
        logger.warning(f"{label} failed: {error.user_message}")
        self.notifier.notify(f"{label} failed: {error.user_message}", severity)

    # ── Orders ───────────────────────────────────────────────────────────

    async def add_order(self, fields: Dict[str, Any]) -> OrderRecord:
        """Create an order from attribute-name → raw value input."""
        try:
            staged = OrderRecord().with_changes(fields, self.delimiter)
        except ValidationError as e:
            self.fail("Adding order", e)
            raise
        return await self._add(staged)

    async def _add(self, staged: OrderRecord) -> OrderRecord:
        try:
            staged = replace(staged, order_id="")
            if staged.created_at is None:
                staged = replace(staged, created_at=self.clock().replace(microsecond=0))
            self._validate(staged)
            data = await self.client.add_order(staged.to_dict(include_id=False))
            record = self.canonical_record(data, staged)
            if record.order_id in self.store:
                raise OperationFailed(f"Server returned an existing order id: {record.order_id}")
        except DashboardError as e:
            self.fail("Adding order", e)
            raise
        self.commit(record)
        self.notifier.success(f"Order {record.document_number or record.order_id} added")
        return record

    async def edit_order(self, order_id: str, changes: Dict[str, Any]) -> OrderRecord:
        """Apply field changes to an existing order."""
        try:
            current = self._require(order_id)
            staged = current.with_changes(changes, self.delimiter)
        except DashboardError as e:
            self.fail("Updating order", e)
            raise
        return await self._edit(order_id, staged)

    async def _edit(self, order_id: str, staged: OrderRecord) -> OrderRecord:
        try:
            self._require(order_id)
            staged = replace(staged, order_id=order_id)
            self._validate(staged)
            with self.busy.hold(order_id):
                data = await self.client.edit_order(order_id, staged.to_dict(include_id=False))
                record = self.canonical_record(data, staged)
                self.commit(record)
        except DashboardError as e:
            self.fail("Updating order", e)
            raise
        self.notifier.success(f"Order {record.document_number or order_id} updated")
        return record

    async def close_order(self, order_id: str, finish_date: Any = None) -> OrderRecord:
        """Mark an order Closed with its actual finish date (now when omitted)."""
        try:
            current = self._require(order_id)
            if current.status == OrderStatus.CLOSED:
                raise ValidationError(f"Order {order_id} is already closed")
            finish = coerce_field("finish_date", finish_date) if finish_date else self.clock().replace(microsecond=0)
            staged = replace(current, status=OrderStatus.CLOSED, finish_date=finish)
            with self.busy.hold(order_id):
                data = await self.client.close_order(order_id, {
                    "finishDate": format_date(finish),
                    "status": OrderStatus.CLOSED.value,
                })
                record = self.canonical_record(data, staged)
                self.commit(record)
        except DashboardError as e:
            self.fail("Closing order", e)
            raise
        self.notifier.success(f"Order {record.document_number or order_id} closed")
        return record

    async def delete_order(self, order_id: str) -> bool:
        try:
            record = self._require(order_id)
            with self.busy.hold(order_id):
                await self.client.delete_order(order_id)
                self.store.remove(order_id)
                logger.info(f"Deleted order {order_id}")
                self.refresh(order_id)
        except DashboardError as e:
            self.fail("Deleting order", e)
            raise
        if self.session is not None and self.session.order_id == order_id:
            self.session = None
        self.notifier.success(f"Order {record.document_number or order_id} deleted")
        return True

    async def update_kanban_status(self, order_id: str, new_status: Any) -> Optional[OrderRecord]:
        return await self.transitions.move(order_id, new_status)

    # ── Containers ───────────────────────────────────────────────────────

    async def add_container(self, number: str) -> str:
        """Register a container number with the remote system."""
        try:
            number = str(number or "").strip()
            if not number:
                raise ValidationError("Container number is required")
            parts = split_containers(number, self.delimiter)
            if len(parts) != 1:
                raise ValidationError(f"Enter a single container number, got {number!r}")
            await self.client.add_new_container(number)
            self.store.register_container(number)
            self.refresh()
        except DashboardError as e:
            self.fail("Adding container", e)
            raise
        self.notifier.success(f"Container {number} added")
        return number

    def known_containers(self) -> Set[str]:
        numbers = set(self.store.registered_containers())
        for record in self.store.get_all():
            numbers.update(record.container_set())
        return numbers

    async def container_history(self, number: str) -> List[Any]:
        """History entries reported by the server for one container."""
        try:
            number = str(number or "").strip()
            if number not in self.known_containers():
                raise NotFound(f"Container {number or '(empty)'} not found")
            data = await self.client.get_container_history(number)
        except DashboardError as e:
            self.fail("Loading container history", e)
            raise
        if data is None:
            return []
        return list(data) if isinstance(data, (list, tuple)) else [data]

    # ── Edit sessions ────────────────────────────────────────────────────

    def _open(self, session: EditSession) -> EditSession:
        if self.session is not None:
            logger.info(f"Discarding unsaved {self.session.mode} session")
        self.session = session
        return session

    def begin_add(self) -> EditSession:
        fields = OrderRecord().to_fields()
        return self._open(EditSession(self, "add", fields))

    def begin_edit(self, order_id: str) -> EditSession:
        record = self._require(order_id)
        return self._open(EditSession(self, "edit", record.to_fields(), order_id=order_id))

    def begin_duplicate(self, order_id: str) -> EditSession:
        """Clone an order into a new add session: id, document and dates cleared, status Open."""
        source = self._require(order_id)
        clone = replace(
            source,
            order_id="",
            document_number="",
            created_at=None,
            expected_finish_date=None,
            finish_date=None,
            status=OrderStatus.OPEN,
        )
        return self._open(EditSession(self, "duplicate", clone.to_fields(), source_id=order_id))

    def discard_session(self) -> None:
        self.session = None

    async def submit(self, session: EditSession) -> OrderRecord:
        """Submit a session; it stays open on failure and is cleared on success."""
        if session.mode == "edit":
            record = await self._edit(session.order_id, session.staged())
        else:
            record = await self._add(session.staged())
        if self.session is session:
            self.session = None
        return record
