"""
View derivation: pure projections of the record store.

Every function here reads records and returns plain dicts/lists ready for a
presentation surface. Nothing in this module writes to the store or to the
view state; derived fields (overdue days, status class) are recomputed on
every call and never persisted.

Table pipeline (fixed order):
  1. full-text search   2. status filter   3. action filter
  4. stable sort        5. page slice
"""
import locale
import math
import unicodedata
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ValidationError
from .schema import (
    ActionType,
    BOARD_STATUSES,
    DEFAULT_DELIMITER,
    OrderRecord,
    OrderStatus,
    split_containers,
    status_class,
)

DEFAULT_PAGE_SIZE = 10
SECONDS_PER_DAY = 24 * 60 * 60
NO_VALUE = "-"

# column -> comparison kind
SORT_COLUMNS = {
    "document_number": "string",
    "customer": "string",
    "agent": "string",
    "address": "string",
    "action_type": "string",
    "status": "string",
    "notes": "string",
    "created_at": "date",
    "expected_finish_date": "date",
    "finish_date": "date",
    "overdue_days": "number",
    "container_count": "number",
}

AUTOCOMPLETE_FIELDS = ("customers", "agents", "documents", "addresses", "containers")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Derived fields
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def overdue_days(record: OrderRecord, now: Optional[datetime] = None) -> int:
    """Whole days past the expected finish, rounded up. 0 unless the order is Overdue."""
    if record.status != OrderStatus.OVERDUE or record.expected_finish_date is None:
        return 0
    now = now or datetime.now()
    elapsed = (now - record.expected_finish_date).total_seconds() / SECONDS_PER_DAY
    return max(0, math.ceil(elapsed))


def _display_date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else NO_VALUE


def row_view(record: OrderRecord, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Table row with precomputed display fields."""
    return {
        "id": record.order_id,
        "document_number": record.document_number,
        "customer": record.customer,
        "agent": record.agent,
        "address": record.address,
        "action_type": record.action_type.value if record.action_type else "",
        "containers": ", ".join(record.containers),
        "status": record.status.value,
        "status_class": status_class(record.status),
        "created_at": _display_date(record.created_at),
        "expected_finish_date": _display_date(record.expected_finish_date),
        "finish_date": _display_date(record.finish_date),
        "overdue_days": overdue_days(record, now),
        "notes": record.notes,
        "can_close": record.status == OrderStatus.OPEN,
    }


def order_details(record: OrderRecord, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Full detail view of one order, including the raw wire values."""
    details = row_view(record, now)
    details["container_list"] = list(record.containers)
    details["record"] = record.to_dict()
    return details


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Table: filter → sort → paginate
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _search_haystack(record: OrderRecord) -> List[str]:
    return [
        record.customer,
        record.document_number,
        record.address,
        ", ".join(record.containers),
        record.status.value,
        record.notes,
    ]


def matches_search(record: OrderRecord, term: str) -> bool:
    """Case-insensitive substring match against the searchable fields."""
    if not term:
        return True
    needle = term.casefold()
    return any(needle in (value or "").casefold() for value in _search_haystack(record))


def filter_records(
    records: Iterable[OrderRecord],
    search: str = "",
    status_filter: Any = "all",
    action_filter: Any = "all",
) -> List[OrderRecord]:
    result = [r for r in records if matches_search(r, search)]
    if isinstance(status_filter, OrderStatus):
        result = [r for r in result if r.status == status_filter]
    if isinstance(action_filter, ActionType):
        result = [r for r in result if r.action_type == action_filter]
    return result


def _fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _string_key(value: str) -> Tuple[str, str]:
    """
    Collation key for display strings.

    Base letters compare first and accents only break ties, so "Émile" sorts
    with the E's even when the process runs in the C locale. ``strxfrm``
    refines the order further once ``LC_COLLATE`` has been set.
    """
    text = (value or "").casefold()
    return (locale.strxfrm(_fold_accents(text)), locale.strxfrm(text))


def sort_key(column: str, now: Optional[datetime] = None):
    """Key function for a sortable column."""
    kind = SORT_COLUMNS.get(column)
    if kind is None:
        raise ValidationError(f"Unknown sort column: {column}")

    if kind == "date":
        def key(record: OrderRecord):
            value = getattr(record, column)
            return value.date() if value else date.min
        return key

    if kind == "number":
        if column == "overdue_days":
            return lambda record: overdue_days(record, now)
        return lambda record: len(record.containers)

    def key(record: OrderRecord):
        value = getattr(record, column)
        if isinstance(value, (OrderStatus, ActionType)):
            value = value.value
        return _string_key(value or "")
    return key


def sort_records(
    records: List[OrderRecord],
    column: Optional[str],
    direction: str = "asc",
    now: Optional[datetime] = None,
) -> List[OrderRecord]:
    """Stable sort; records with equal keys keep their store order in both directions."""
    if not column:
        return list(records)
    return sorted(records, key=sort_key(column, now), reverse=(direction == "desc"))


def total_pages_for(count: int, page_size: int) -> int:
    return max(1, math.ceil(count / page_size))


def compute_view(
    records: Iterable[OrderRecord],
    view_state,
    page_size: int = DEFAULT_PAGE_SIZE,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Project the records through the table pipeline.

    Returns:
        {"rows", "total_pages", "total_count", "page"} where ``page`` is the
        requested page clamped into 1..total_pages.
    """
    now = now or datetime.now()
    filtered = filter_records(
        records,
        search=view_state.search,
        status_filter=view_state.status_filter,
        action_filter=view_state.action_filter,
    )
    ordered = sort_records(filtered, view_state.sort_column, view_state.sort_direction, now)

    total_count = len(ordered)
    total_pages = total_pages_for(total_count, page_size)
    page = min(max(1, view_state.page), total_pages)

    start = (page - 1) * page_size
    rows = [row_view(r, now) for r in ordered[start:start + page_size]]
    return {
        "rows": rows,
        "total_pages": total_pages,
        "total_count": total_count,
        "page": page,
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Treatment board
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def card_view(record: OrderRecord, now: Optional[datetime] = None, pending: bool = False) -> Dict[str, Any]:
    return {
        "id": record.order_id,
        "document_number": record.document_number,
        "customer": record.customer,
        "status": record.status.value,
        "overdue_days": overdue_days(record, now),
        "pending": pending,
    }


def group_kanban(
    records: Iterable[OrderRecord],
    now: Optional[datetime] = None,
    pending: Optional[Dict[str, OrderStatus]] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Partition board-eligible records into the three columns.

    ``pending`` maps order ids to the column they were dropped on while the
    status change is still in flight; those cards are shown in the target
    column and flagged. Records outside the board statuses are left out.
    """
    pending = pending or {}
    buckets: Dict[str, List[Dict[str, Any]]] = {s.value: [] for s in BOARD_STATUSES}
    for record in records:
        target = pending.get(record.order_id)
        status = target if target in BOARD_STATUSES else record.status
        if status not in BOARD_STATUSES:
            continue
        buckets[status.value].append(card_view(record, now, pending=target is not None))
    return buckets


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Dashboard counters and chart data
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _in_use(record: OrderRecord) -> bool:
    return record.status != OrderStatus.CLOSED and record.action_type == ActionType.PICKUP


def dashboard_counters(records: Iterable[OrderRecord]) -> Dict[str, int]:
    records = list(records)
    return {
        "open_count": sum(1 for r in records if r.status in (OrderStatus.OPEN, OrderStatus.PENDING)),
        "overdue_count": sum(1 for r in records if r.status == OrderStatus.OVERDUE),
        "in_use_containers": sum(1 for r in records if _in_use(r)),
        "distinct_customers": len({r.customer for r in records if r.customer}),
    }


def status_breakdown(records: Iterable[OrderRecord]) -> Dict[str, int]:
    """Order count per status, every status present (pie chart data)."""
    counts = {s.value: 0 for s in OrderStatus}
    for record in records:
        counts[record.status.value] += 1
    return counts


def containers_by_customer(records: Iterable[OrderRecord]) -> List[Dict[str, Any]]:
    """Distinct containers held by each customer on non-closed orders (bar chart data)."""
    held: Dict[str, Dict[str, None]] = {}
    for record in records:
        if record.status == OrderStatus.CLOSED or not record.customer:
            continue
        bucket = held.setdefault(record.customer, {})
        for number in record.container_set():
            bucket[number] = None
    rows = [{"customer": c, "containers": len(numbers)} for c, numbers in held.items()]
    rows.sort(key=lambda row: (-row["containers"], _string_key(row["customer"])))
    return rows


def upcoming_overdue(
    records: Iterable[OrderRecord],
    now: Optional[datetime] = None,
    within_days: int = 3,
) -> List[Dict[str, Any]]:
    """Open orders whose expected finish falls within the next ``within_days`` days."""
    now = now or datetime.now()
    alerts = []
    for record in records:
        if record.status != OrderStatus.OPEN or record.expected_finish_date is None:
            continue
        days_left = math.floor((record.expected_finish_date - now).total_seconds() / SECONDS_PER_DAY)
        if 0 <= days_left <= within_days:
            alerts.append({
                "id": record.order_id,
                "document_number": record.document_number,
                "customer": record.customer,
                "days_left": days_left,
            })
    return alerts


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Container inventory
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def container_inventory(
    records: Iterable[OrderRecord],
    registered: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Derive container usage from the orders.

    A container is "in use" while a non-closed pickup order references it;
    otherwise it is "available", with the finish date and document of the
    closed order that finished last.
    """
    records = list(records)
    all_numbers = set(n.strip() for n in registered if n and n.strip())
    for record in records:
        all_numbers.update(record.container_set())

    in_use_rows = []
    in_use_numbers = set()
    for record in records:
        if not _in_use(record):
            continue
        for number in record.container_set():
            in_use_numbers.add(number)
            in_use_rows.append({
                "number": number,
                "status": "in use",
                "order_id": record.order_id,
                "document_number": record.document_number,
                "created_at": _display_date(record.created_at),
                "customer": record.customer,
            })

    last_closed: Dict[str, OrderRecord] = {}
    for record in records:
        if record.status != OrderStatus.CLOSED:
            continue
        for number in record.container_set():
            current = last_closed.get(number)
            if current is None or _finish_key(record) > _finish_key(current):
                last_closed[number] = record

    available_rows = []
    for number in sorted(all_numbers - in_use_numbers, key=_string_key):
        closed = last_closed.get(number)
        available_rows.append({
            "number": number,
            "status": "available",
            "finish_date": _display_date(closed.finish_date) if closed else NO_VALUE,
            "document_number": closed.document_number if closed else NO_VALUE,
        })

    return {
        "all": sorted(all_numbers, key=_string_key),
        "total": len(all_numbers),
        "in_use": in_use_rows,
        "available": available_rows,
    }


def _finish_key(record: OrderRecord) -> datetime:
    return record.finish_date or datetime.min


def container_status(inventory: Dict[str, Any], number: str) -> Optional[str]:
    for row in inventory["in_use"]:
        if row["number"] == number:
            return "in use"
    for row in inventory["available"]:
        if row["number"] == number:
            return "available"
    return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Autocomplete
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AutocompleteIndex:
    """Distinct per-field value sets, rebuilt from the full record set."""

    def __init__(self, delimiter: str = DEFAULT_DELIMITER):
        self.delimiter = delimiter
        self.values: Dict[str, List[str]] = {name: [] for name in AUTOCOMPLETE_FIELDS}

    def rebuild(self, records: Iterable[OrderRecord], registered: Iterable[str] = ()) -> None:
        sets: Dict[str, set] = {name: set() for name in AUTOCOMPLETE_FIELDS}
        for record in records:
            if record.customer:
                sets["customers"].add(record.customer)
            if record.agent:
                sets["agents"].add(record.agent)
            if record.document_number:
                sets["documents"].add(record.document_number)
            if record.address:
                sets["addresses"].add(record.address)
            for entry in record.containers:
                sets["containers"].update(split_containers(entry, self.delimiter))
        for number in registered:
            sets["containers"].update(split_containers(number, self.delimiter))
        self.values = {name: sorted(values, key=_string_key) for name, values in sets.items()}

    def suggest(self, field: str, text: str, limit: int = 5) -> List[str]:
        """Case-insensitive substring suggestions; prefix matches first."""
        if field not in self.values:
            raise ValidationError(f"Unknown autocomplete field: {field}")
        needle = (text or "").strip().casefold()
        if not needle:
            return []
        matches = [v for v in self.values[field] if needle in v.casefold()]
        matches.sort(key=lambda v: not v.casefold().startswith(needle))
        return matches[:limit]

    def to_dict(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self.values.items()}
