"""
Tests for the table view state.
"""
import pytest

from containerboard.errors import ValidationError
from containerboard.schema import ActionType, OrderStatus
from containerboard.viewstate import ALL, ViewState


class TestViewState:
    """Search/filter/sort changes always return to page 1."""

    def setup_method(self):
        self.state = ViewState()
        self.state.page = 4

    def test_defaults(self):
        state = ViewState()
        assert state.sort_column == "created_at"
        assert state.sort_direction == "desc"
        assert state.status_filter == ALL
        assert state.page == 1

    def test_search_resets_page(self):
        self.state.set_search("  acme ")
        assert self.state.search == "acme"
        assert self.state.page == 1

    def test_status_filter_resets_page(self):
        self.state.set_status_filter("Overdue")
        assert self.state.status_filter == OrderStatus.OVERDUE
        assert self.state.page == 1

    def test_action_filter_resets_page(self):
        self.state.set_action_filter("dropoff")
        assert self.state.action_filter == ActionType.DROPOFF
        assert self.state.page == 1

    def test_all_clears_filter(self):
        self.state.set_status_filter("Overdue")
        self.state.set_status_filter("all")
        assert self.state.status_filter == ALL
        self.state.set_action_filter(None)
        assert self.state.action_filter == ALL

    def test_sort_resets_page(self):
        self.state.set_sort("customer", "asc")
        assert (self.state.sort_column, self.state.sort_direction) == ("customer", "asc")
        assert self.state.page == 1

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            self.state.set_sort("colour")
        with pytest.raises(ValidationError):
            self.state.set_sort("customer", "sideways")
        with pytest.raises(ValidationError):
            self.state.set_status_filter("Archived")
        assert self.state.page == 4


def test_toggle_sort():
    state = ViewState()
    state.toggle_sort("customer")
    assert (state.sort_column, state.sort_direction) == ("customer", "asc")
    state.toggle_sort("customer")
    assert state.sort_direction == "desc"
    state.toggle_sort("address")
    assert (state.sort_column, state.sort_direction) == ("address", "asc")


def test_paging_is_bounded():
    state = ViewState()
    assert not state.prev_page()
    assert state.next_page(total_pages=2)
    assert state.page == 2
    assert not state.next_page(total_pages=2)
    assert state.prev_page()
    assert state.page == 1


def test_clamp():
    state = ViewState(page=7)
    assert state.clamp(3) == 3
    assert state.clamp(0) == 1


def test_to_dict_uses_wire_values():
    state = ViewState()
    state.set_status_filter("Pending/Invalid")
    data = state.to_dict()
    assert data["status_filter"] == "Pending/Invalid"
    assert data["action_filter"] == "all"
    assert data["page"] == 1
