"""
Event bus: connects the dashboard core to its presentation and notification surfaces.

The core emits events (notification, store_changed, view_refreshed, loading).
Surfaces subscribe callbacks; the core never reads their state back.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Any

logger = logging.getLogger(__name__)

SEVERITIES = ("success", "info", "warning", "error")


class EventBus:
    """Routes core events to subscribed callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        callbacks = self.subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers."""
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}", exc_info=True)


@dataclass
class Notification:
    """One user-visible toast."""
    message: str
    severity: str
    duration: int
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "severity": self.severity,
            "duration": self.duration,
            "timestamp": self.timestamp,
        }


class Notifier:
    """
    Notification surface adapter.

    Every notification is published on the bus as a ``notification`` event and
    kept in a bounded history so pull-based surfaces can drain it.
    """

    def __init__(self, bus: EventBus, durations: Optional[Dict[str, int]] = None, history: int = 100):
        self.bus = bus
        self.durations = durations or {}
        self.history: deque = deque(maxlen=history)
        self._undelivered: deque = deque(maxlen=history)

    def notify(self, message: str, severity: str = "info", duration: Optional[int] = None) -> Notification:
        if severity not in SEVERITIES:
            raise ValueError(f"Invalid severity: {severity}")
        if duration is None:
            duration = self.durations.get(severity, 3000)
        note = Notification(message=message, severity=severity, duration=duration)
        self.history.append(note)
        self._undelivered.append(note)
        log = logger.error if severity == "error" else logger.info
        log(f"[{severity}] {message}")
        self.bus.emit("notification", notification=note)
        return note

    def success(self, message: str) -> Notification:
        return self.notify(message, "success")

    def info(self, message: str) -> Notification:
        return self.notify(message, "info")

    def warning(self, message: str) -> Notification:
        return self.notify(message, "warning")

    def error(self, message: str) -> Notification:
        return self.notify(message, "error")

    def drain(self) -> List[Notification]:
        """Return and forget notifications not yet handed to a pull-based surface."""
        drained = list(self._undelivered)
        self._undelivered.clear()
        return drained
