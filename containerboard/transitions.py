"""
Treatment board status transitions.

Any order may be dropped on any board column; there is no transition table.
Each order runs a two-phase machine:

  IDLE ──drop on another column──▶ IN_FLIGHT ──settled──▶ IDLE

While IN_FLIGHT the card is shown in the target column as pending, and a
second drop on the same card is rejected with RecordBusy, including a drop
back on the column the store still reports. A failed call only
clears the pending overlay, so the board re-renders the card where the store
still has it.
"""
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import DashboardError, NotFound, RecordBusy, ValidationError
from .schema import BOARD_STATUSES, OrderRecord, OrderStatus, StatusTransition

logger = logging.getLogger(__name__)


class TransitionPhase(Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class KanbanTransitions:
    """Validates and serializes drag-driven status changes."""

    def __init__(self, coordinator, history_limit: int = 200):
        self.coordinator = coordinator
        self.history_limit = history_limit
        self.history: List[StatusTransition] = []
        self._pending: Dict[str, OrderStatus] = {}

    def phase(self, order_id: str) -> TransitionPhase:
        if order_id in self._pending:
            return TransitionPhase.IN_FLIGHT
        return TransitionPhase.IDLE

    def pending_statuses(self) -> Dict[str, OrderStatus]:
        """Optimistic overlay: order id → column the card was dropped on."""
        return dict(self._pending)

    def _record(self, transition: StatusTransition) -> None:
        self.history.append(transition)
        if len(self.history) > self.history_limit:
            del self.history[: len(self.history) - self.history_limit]

    async def move(self, order_id: str, target: Any) -> Optional[OrderRecord]:
        """
        Move an order to a board column.

        Returns the committed record, or None when the card was dropped on
        the column it is already in (no remote call, no notification).

        Raises:
            ValidationError: target is not a board column.
            NotFound: the order is not in the store (stale card).
            RecordBusy: a status change for this order is still in flight.
            NetworkError / RateLimited / OperationFailed: the remote call failed.
        """
        coordinator = self.coordinator
        store = coordinator.store
        try:
            status = OrderStatus.parse(target)
            if status not in BOARD_STATUSES:
                raise ValidationError(f"{status.value} is not a board column")
            current = store.get(order_id)
            if current is None:
                raise NotFound(f"Order {order_id} not found")
            # The store still holds the pre-drop status while a move is in flight
            if coordinator.busy.is_busy(order_id):
                raise RecordBusy()
            if current.status == status:
                logger.debug(f"Order {order_id} already {status.value}, ignoring drop")
                return None

            with coordinator.busy.hold(order_id):
                self._pending[order_id] = status
                coordinator.bus.emit("transition_started", order_id=order_id, status=status)
                try:
                    data = await coordinator.client.update_kanban_status(order_id, status.value)
                    staged = replace(current, status=status)
                    record = coordinator.canonical_record(data, staged)
                finally:
                    self._pending.pop(order_id, None)
                coordinator.commit(record)
        except DashboardError as e:
            coordinator.fail("Status update", e)
            coordinator.refresh(order_id)
            raise

        self._record(StatusTransition(order_id, current.status, record.status))
        logger.info(f"Order {order_id}: {current.status.value} → {record.status.value}")
        coordinator.notifier.success(f"Order {record.document_number or order_id} moved to {record.status.value}")
        return record
