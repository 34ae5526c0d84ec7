"""
Dashboard session: composes the core and exposes the presentation intents.

Presentation surfaces call the intent methods and read ``view_model()``.
Every intent catches DashboardError at this boundary and returns a falsy
result; the user has already been notified by the time it returns.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .client import RemoteClient
from .config import Config
from .errors import DashboardError, InitialLoadFailed, NotFound, OperationFailed, ValidationError
from .events import EventBus, Notifier
from .mutations import EditSession, MutationCoordinator
from .schema import OrderRecord
from .store import RecordStore
from .views import (
    AutocompleteIndex,
    compute_view,
    container_inventory,
    containers_by_customer,
    dashboard_counters,
    group_kanban,
    order_details,
    status_breakdown,
    upcoming_overdue,
)
from .viewstate import ViewState

logger = logging.getLogger(__name__)


class Dashboard:
    """One dashboard session over the remote order system."""

    def __init__(
        self,
        config: Optional[Config] = None,
        client: Optional[RemoteClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or Config()
        self.clock = clock
        self.bus = EventBus()
        self.notifier = Notifier(self.bus, self.config.notification_durations)
        self.client = client or RemoteClient.from_config(self.config)
        self.client.subscribe_loading(self._on_loading)

        self.store = RecordStore()
        self.autocomplete = AutocompleteIndex(self.config.container_delimiter)
        self.store.subscribe(self._on_commit)

        self.view_state = ViewState(
            sort_column=self.config.default_sort_column,
            sort_direction=self.config.default_sort_direction,
        )
        self.coordinator = MutationCoordinator(
            self.client,
            self.store,
            self.notifier,
            self.bus,
            delimiter=self.config.container_delimiter,
            clock=clock,
        )
        self.transitions = self.coordinator.transitions
        self.bus.subscribe("store_changed", self._on_store_changed)

        self.ready = False
        self.load_error: Optional[InitialLoadFailed] = None

    # ── Event plumbing ───────────────────────────────────────────────────

    def _on_loading(self, in_flight: int) -> None:
        self.bus.emit("loading", in_flight=in_flight, loading=in_flight > 0)

    def _on_commit(self, version: int) -> None:
        self.autocomplete.rebuild(self.store.get_all(), self.store.registered_containers())

    def _on_store_changed(self, version: int, order_id: Optional[str] = None) -> None:
        table = compute_view(self.store.get_all(), self.view_state, self.config.page_size, self.clock())
        self.view_state.clamp(table["total_pages"])
        self.bus.emit("view_refreshed", version=version, order_id=order_id)

    # ── Full refresh ─────────────────────────────────────────────────────

    def _parse_snapshot(self, data: Any) -> Tuple[List[OrderRecord], List[str]]:
        if data is None:
            orders, containers = [], []
        elif isinstance(data, list):
            orders, containers = data, []
        elif isinstance(data, dict):
            orders = data.get("orders") or []
            containers = data.get("containers") or []
        else:
            raise OperationFailed(f"Unexpected getAllOrders response: {type(data).__name__}")

        records, seen, skipped = [], set(), 0
        for raw in orders:
            try:
                record = OrderRecord.from_dict(raw, self.config.container_delimiter)
            except ValidationError as e:
                logger.warning(f"Skipping invalid order from server: {e.user_message}")
                skipped += 1
                continue
            if not record.order_id or record.order_id in seen:
                logger.warning(f"Skipping order with missing or duplicate id: {record.order_id!r}")
                skipped += 1
                continue
            seen.add(record.order_id)
            records.append(record)

        if skipped:
            self.notifier.warning(f"{skipped} invalid orders were skipped")
        numbers = [str(c).strip() for c in containers if str(c or "").strip()]
        return records, numbers

    async def _refresh(self) -> int:
        data = await self.client.get_all_orders()
        records, containers = self._parse_snapshot(data)
        self.store.replace_all(records, containers)
        self.coordinator.refresh()
        return len(records)

    async def load(self) -> int:
        """
        Initial full refresh.

        Raises:
            InitialLoadFailed: the dashboard has no data; ``ready`` stays False.
        """
        try:
            count = await self._refresh()
        except DashboardError as e:
            self.ready = False
            self.load_error = InitialLoadFailed(e)
            self.notifier.error(self.load_error.user_message)
            raise self.load_error from e

        self.ready = True
        self.load_error = None
        logger.info(f"Loaded {count} orders")
        self._emit_upcoming_alerts()
        return count

    async def reload(self) -> bool:
        """Full refresh later in the session; the store is kept on failure."""
        if not self.ready:
            try:
                await self.load()
            except InitialLoadFailed:
                return False
            return True
        try:
            count = await self._refresh()
        except DashboardError as e:
            self.notifier.error(f"Refresh failed: {e.user_message}")
            return False
        self.notifier.info(f"Refreshed {count} orders")
        return True

    def _emit_upcoming_alerts(self) -> None:
        alerts = upcoming_overdue(self.store.get_all(), self.clock(), self.config.upcoming_overdue_days)
        for alert in alerts:
            days = alert["days_left"]
            when = "today" if days == 0 else f"in {days} day{'s' if days != 1 else ''}"
            self.notifier.warning(
                f"Order {alert['document_number'] or alert['id']} for {alert['customer']} is due {when}"
            )

    # ── View model ───────────────────────────────────────────────────────

    def view_model(self) -> Dict[str, Any]:
        records = self.store.get_all()
        now = self.clock()
        session = self.coordinator.session
        return {
            "ready": self.ready,
            "loading": self.client.loading,
            "version": self.store.version,
            "view_state": self.view_state.to_dict(),
            "table": compute_view(records, self.view_state, self.config.page_size, now),
            "board": group_kanban(records, now, self.transitions.pending_statuses()),
            "counters": dashboard_counters(records),
            "charts": {
                "orders_by_status": status_breakdown(records),
                "containers_by_customer": containers_by_customer(records),
            },
            "inventory": container_inventory(records, self.store.registered_containers()),
            "autocomplete": self.autocomplete.to_dict(),
            "session": session.to_dict() if session else None,
        }

    def order_details(self, order_id: str) -> Dict[str, Any]:
        record = self.store.get(order_id)
        if record is None:
            raise NotFound(f"Order {order_id} not found")
        return order_details(record, self.clock())

    def suggest(self, field: str, text: str, limit: int = 5) -> List[str]:
        return self.autocomplete.suggest(field, text, limit)

    # ── Filter intents ───────────────────────────────────────────────────

    def _view_intent(self, change: Callable[[], Any]) -> bool:
        try:
            change()
        except ValidationError as e:
            self.notifier.warning(e.user_message)
            return False
        self.bus.emit("view_refreshed", version=self.store.version, order_id=None)
        return True

    def set_search(self, text: str) -> bool:
        return self._view_intent(lambda: self.view_state.set_search(text))

    def set_status_filter(self, value: Any) -> bool:
        return self._view_intent(lambda: self.view_state.set_status_filter(value))

    def set_action_filter(self, value: Any) -> bool:
        return self._view_intent(lambda: self.view_state.set_action_filter(value))

    def sort_by(self, column: str) -> bool:
        return self._view_intent(lambda: self.view_state.toggle_sort(column))

    def set_sort(self, column: str, direction: str = "asc") -> bool:
        return self._view_intent(lambda: self.view_state.set_sort(column, direction))

    def _total_pages(self) -> int:
        table = compute_view(self.store.get_all(), self.view_state, self.config.page_size, self.clock())
        return table["total_pages"]

    def next_page(self) -> bool:
        return self.view_state.next_page(self._total_pages())

    def prev_page(self) -> bool:
        return self.view_state.prev_page()

    def go_to_page(self, page: int) -> int:
        """Jump to ``page``, clamped into the current result set."""
        self.view_state.page = page
        return self.view_state.clamp(self._total_pages())

    # ── Mutation intents ─────────────────────────────────────────────────

    async def _intent(self, operation):
        try:
            return await operation
        except DashboardError as e:
            logger.debug(f"Intent rejected: {e.user_message}")
            return None

    async def add_order(self, fields: Dict[str, Any]) -> Optional[OrderRecord]:
        return await self._intent(self.coordinator.add_order(fields))

    async def edit_order(self, order_id: str, changes: Dict[str, Any]) -> Optional[OrderRecord]:
        return await self._intent(self.coordinator.edit_order(order_id, changes))

    async def close_order(self, order_id: str, finish_date: Any = None) -> Optional[OrderRecord]:
        return await self._intent(self.coordinator.close_order(order_id, finish_date))

    async def delete_order(self, order_id: str) -> bool:
        return bool(await self._intent(self.coordinator.delete_order(order_id)))

    async def drop_card(self, order_id: str, status: Any) -> Optional[OrderRecord]:
        return await self._intent(self.coordinator.update_kanban_status(order_id, status))

    async def add_container(self, number: str) -> Optional[str]:
        return await self._intent(self.coordinator.add_container(number))

    async def container_history(self, number: str) -> Optional[List[Any]]:
        return await self._intent(self.coordinator.container_history(number))

    # ── Edit session intents ─────────────────────────────────────────────

    def _session_intent(self, begin: Callable[[], EditSession]) -> Optional[EditSession]:
        try:
            return begin()
        except DashboardError as e:
            self.notifier.error(e.user_message)
            return None

    def begin_add(self) -> Optional[EditSession]:
        return self._session_intent(self.coordinator.begin_add)

    def begin_edit(self, order_id: str) -> Optional[EditSession]:
        return self._session_intent(lambda: self.coordinator.begin_edit(order_id))

    def duplicate_order(self, order_id: str) -> Optional[EditSession]:
        return self._session_intent(lambda: self.coordinator.begin_duplicate(order_id))

    def update_session(self, changes: Dict[str, Any], note: str = "") -> bool:
        """Stage form input on the active session."""
        session = self.coordinator.session
        if session is None:
            self.notifier.warning("No order form is open")
            return False
        try:
            for name, value in changes.items():
                session.set(name, value)
        except ValidationError as e:
            self.notifier.error(e.user_message)
            return False
        if note:
            session.append_note(note)
        return True

    async def submit_session(self) -> Optional[OrderRecord]:
        session = self.coordinator.session
        if session is None:
            self.notifier.warning("No order form is open")
            return None
        return await self._intent(session.submit())

    def discard_session(self) -> None:
        self.coordinator.discard_session()
