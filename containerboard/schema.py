"""
Order record schema and wire mapping.

Order lifecycle:
  Open → InTreatment / Overdue → Treated → Closed

Records are immutable snapshots. The store replaces a record wholesale with the
server's canonical value; edits are staged on a copy and only committed once
the server confirms them.
"""
from enum import Enum
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Iterable, Tuple

from .errors import ValidationError


DEFAULT_DELIMITER = ","


class OrderStatus(Enum):
    """Closed set of order lifecycle statuses (wire values)."""
    OPEN = "Open"
    CLOSED = "Closed"
    OVERDUE = "Overdue"
    SUSPENDED = "Suspended"
    PENDING = "Pending/Invalid"
    IN_TREATMENT = "InTreatment"
    TREATED = "Treated"

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for status in cls:
            if text == status.value or text.upper() == status.name:
                return status
        raise ValidationError(f"Unknown order status: {value!r}")


class ActionType(Enum):
    """What the truck does at the customer's address."""
    PICKUP = "pickup"
    DROPOFF = "dropoff"

    @classmethod
    def parse(cls, value: Any) -> "ActionType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("-", "").replace("_", "")
        for action in cls:
            if text == action.value:
                return action
        raise ValidationError(f"Unknown action type: {value!r}")


# Statuses shown as columns on the treatment board, in column order
BOARD_STATUSES = (OrderStatus.OVERDUE, OrderStatus.IN_TREATMENT, OrderStatus.TREATED)

STATUS_CLASSES = {
    OrderStatus.OPEN: "status-open",
    OrderStatus.CLOSED: "status-closed",
    OrderStatus.OVERDUE: "status-overdue",
    OrderStatus.SUSPENDED: "status-warning",
    OrderStatus.PENDING: "status-pending",
}

# python attribute -> wire key
WIRE_KEYS = {
    "order_id": "id",
    "document_number": "documentNumber",
    "customer": "customer",
    "agent": "agent",
    "address": "address",
    "action_type": "actionType",
    "containers": "containers",
    "created_at": "createdAt",
    "expected_finish_date": "expectedFinishDate",
    "finish_date": "finishDate",
    "notes": "notes",
    "status": "status",
}
FIELD_NAMES = {wire: attr for attr, wire in WIRE_KEYS.items()}

# Recomputed on every view; tolerated on input but never stored
DERIVED_KEYS = {"overdueDays", "statusClass"}

REQUIRED_FIELDS = ("customer", "document_number", "address", "action_type", "containers")

DATE_FIELDS = ("created_at", "expected_finish_date", "finish_date")


def status_class(status: OrderStatus) -> str:
    return STATUS_CLASSES.get(status, "")


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO date or datetime into a naive local datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_date(value: Optional[datetime]) -> Optional[str]:
    """ISO date when the time is midnight, full ISO datetime otherwise."""
    if value is None:
        return None
    if value.time() == datetime.min.time():
        return value.date().isoformat()
    return value.isoformat(timespec="seconds")


def split_containers(value: Any, delimiter: str = DEFAULT_DELIMITER) -> Tuple[str, ...]:
    """Normalize a container list: split on the delimiter, trim, drop empties."""
    if value is None:
        return ()
    if isinstance(value, str):
        parts: Iterable[Any] = value.split(delimiter)
    else:
        parts = value
    return tuple(p for p in (str(part).strip() for part in parts) if p)


def coerce_field(name: str, value: Any, delimiter: str = DEFAULT_DELIMITER) -> Any:
    """Convert a raw form/wire value into the attribute's python type."""
    if name not in WIRE_KEYS:
        raise ValidationError(f"Unknown order field: {name}")
    if name == "status":
        return OrderStatus.parse(value)
    if name == "action_type":
        if value is None or value == "":
            return None
        return ActionType.parse(value)
    if name == "containers":
        return split_containers(value, delimiter)
    if name in DATE_FIELDS:
        return parse_date(value)
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class OrderRecord:
    """One rental/transport order as held by the record store."""

    # Identifier assigned by the server; empty only for unsaved drafts
    order_id: str = ""

    # Parties
    document_number: str = ""
    customer: str = ""
    agent: str = ""
    address: str = ""

    # What is moved
    action_type: Optional[ActionType] = None
    containers: Tuple[str, ...] = ()

    # Dates
    created_at: Optional[datetime] = None
    expected_finish_date: Optional[datetime] = None
    finish_date: Optional[datetime] = None

    notes: str = ""
    status: OrderStatus = OrderStatus.OPEN

    def missing_required(self) -> List[str]:
        """Names of required fields that are empty."""
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]

    def with_changes(self, changes: Dict[str, Any], delimiter: str = DEFAULT_DELIMITER) -> "OrderRecord":
        """Return a staged copy with the given attribute changes applied."""
        coerced = {name: coerce_field(name, value, delimiter) for name, value in changes.items()}
        return replace(self, **coerced)

    def container_set(self) -> List[str]:
        """Container numbers de-duplicated, first occurrence order kept."""
        return list(dict.fromkeys(self.containers))

    def to_fields(self) -> Dict[str, Any]:
        """Plain attribute dict, as used to pre-fill an edit session."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_dict(self, include_id: bool = True) -> Dict[str, Any]:
        """Serialize to the wire format."""
        data = {
            "id": self.order_id,
            "documentNumber": self.document_number,
            "customer": self.customer,
            "agent": self.agent,
            "address": self.address,
            "actionType": self.action_type.value if self.action_type else None,
            "containers": list(self.containers),
            "createdAt": format_date(self.created_at),
            "expectedFinishDate": format_date(self.expected_finish_date),
            "finishDate": format_date(self.finish_date),
            "notes": self.notes,
            "status": self.status.value,
        }
        if not include_id:
            data.pop("id")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], delimiter: str = DEFAULT_DELIMITER) -> "OrderRecord":
        """Deserialize from the wire format, rejecting unrecognized keys."""
        if not isinstance(data, dict):
            raise ValidationError(f"Order payload must be an object, got {type(data).__name__}")

        unknown = set(data) - set(FIELD_NAMES) - DERIVED_KEYS
        if unknown:
            raise ValidationError(f"Unknown order fields: {', '.join(sorted(unknown))}")

        values = {}
        for wire_key, attr in FIELD_NAMES.items():
            if wire_key in data:
                values[attr] = coerce_field(attr, data[wire_key], delimiter)
        return cls(**values)


@dataclass
class StatusTransition:
    """One committed board move, kept for the session's audit trail."""
    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "timestamp": self.timestamp,
        }
