"""
Tests for the order record schema and wire mapping.
"""
from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from containerboard.errors import ValidationError
from containerboard.schema import (
    ActionType,
    OrderRecord,
    OrderStatus,
    StatusTransition,
    format_date,
    parse_date,
    split_containers,
    status_class,
)

from conftest import make_record


WIRE_ORDER = {
    "id": "ORD-1",
    "documentNumber": "D-100",
    "customer": "Acme ",
    "agent": "Dana",
    "address": "1 Harbor Rd",
    "actionType": "pickup",
    "containers": "C-1, C-2,, C-3 ",
    "createdAt": "2024-05-01",
    "expectedFinishDate": "2024-05-10T08:30:00",
    "finishDate": None,
    "notes": "fragile",
    "status": "Overdue",
}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_status_parse_accepts_wire_value_and_name():
    assert OrderStatus.parse("Pending/Invalid") == OrderStatus.PENDING
    assert OrderStatus.parse("in_treatment") == OrderStatus.IN_TREATMENT
    assert OrderStatus.parse(OrderStatus.CLOSED) == OrderStatus.CLOSED


def test_status_parse_rejects_unknown():
    with pytest.raises(ValidationError):
        OrderStatus.parse("Archived")


def test_action_parse_normalizes_spelling():
    assert ActionType.parse("Drop-off") == ActionType.DROPOFF
    assert ActionType.parse("PICKUP") == ActionType.PICKUP
    with pytest.raises(ValidationError):
        ActionType.parse("swap")


def test_status_classes():
    assert status_class(OrderStatus.OPEN) == "status-open"
    assert status_class(OrderStatus.SUSPENDED) == "status-warning"
    assert status_class(OrderStatus.PENDING) == "status-pending"
    assert status_class(OrderStatus.TREATED) == ""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Field helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_split_containers_trims_and_drops_empties():
    assert split_containers("C-1, C-2,, C-3 ") == ("C-1", "C-2", "C-3")
    assert split_containers(["C-1", " ", "C-2"]) == ("C-1", "C-2")
    assert split_containers("C-1;C-2", delimiter=";") == ("C-1", "C-2")
    assert split_containers(None) == ()


def test_parse_date_variants():
    assert parse_date("2024-05-01") == datetime(2024, 5, 1)
    assert parse_date("2024-05-01T08:30:00") == datetime(2024, 5, 1, 8, 30)
    assert parse_date("") is None
    assert parse_date("2024-05-01T08:30:00Z").tzinfo is None


def test_parse_date_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_date("next tuesday")


def test_format_date_drops_midnight_time():
    assert format_date(datetime(2024, 5, 1)) == "2024-05-01"
    assert format_date(datetime(2024, 5, 1, 8, 30)) == "2024-05-01T08:30:00"
    assert format_date(None) is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# OrderRecord
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_from_dict_parses_wire_format():
    record = OrderRecord.from_dict(WIRE_ORDER)
    assert record.order_id == "ORD-1"
    assert record.customer == "Acme"
    assert record.action_type == ActionType.PICKUP
    assert record.containers == ("C-1", "C-2", "C-3")
    assert record.created_at == datetime(2024, 5, 1)
    assert record.expected_finish_date == datetime(2024, 5, 10, 8, 30)
    assert record.finish_date is None
    assert record.status == OrderStatus.OVERDUE


def test_from_dict_rejects_unknown_fields():
    with pytest.raises(ValidationError, match="colour"):
        OrderRecord.from_dict({**WIRE_ORDER, "colour": "red"})


def test_from_dict_ignores_derived_fields():
    record = OrderRecord.from_dict({**WIRE_ORDER, "overdueDays": 4, "statusClass": "status-overdue"})
    assert record.order_id == "ORD-1"


def test_from_dict_rejects_non_object():
    with pytest.raises(ValidationError):
        OrderRecord.from_dict(["ORD-1"])


def test_to_dict_uses_wire_keys():
    data = OrderRecord.from_dict(WIRE_ORDER).to_dict()
    assert data["id"] == "ORD-1"
    assert data["documentNumber"] == "D-100"
    assert data["containers"] == ["C-1", "C-2", "C-3"]
    assert data["createdAt"] == "2024-05-01"
    assert data["status"] == "Overdue"
    assert "id" not in OrderRecord.from_dict(WIRE_ORDER).to_dict(include_id=False)


def test_records_are_immutable():
    record = make_record()
    with pytest.raises(FrozenInstanceError):
        record.notes = "changed"


def test_with_changes_returns_staged_copy():
    record = make_record(notes="old")
    staged = record.with_changes({"notes": " new ", "containers": "C-7,C-8", "status": "Treated"})
    assert staged.notes == "new"
    assert staged.containers == ("C-7", "C-8")
    assert staged.status == OrderStatus.TREATED
    assert record.notes == "old"


def test_with_changes_rejects_unknown_field():
    with pytest.raises(ValidationError):
        make_record().with_changes({"priority": "high"})


def test_missing_required():
    assert make_record().missing_required() == []
    draft = OrderRecord(customer="Acme")
    assert draft.missing_required() == ["document_number", "address", "action_type", "containers"]


def test_container_set_deduplicates_in_order():
    record = make_record(containers=("C-2", "C-1", "C-2"))
    assert record.container_set() == ["C-2", "C-1"]


def test_status_transition_to_dict():
    transition = StatusTransition("A", OrderStatus.OPEN, OrderStatus.IN_TREATMENT)
    data = transition.to_dict()
    assert data["from_status"] == "Open"
    assert data["to_status"] == "InTreatment"
    assert data["timestamp"]
