"""
Process-wide table view state: search text, filters, sort, and current page.

Only the filter-change handlers below write to it. Any change to search,
filters, or sort sends the table back to page 1.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import ValidationError
from .schema import ActionType, OrderStatus
from .views import SORT_COLUMNS

ALL = "all"


@dataclass
class ViewState:
    search: str = ""
    status_filter: Union[str, OrderStatus] = ALL
    action_filter: Union[str, ActionType] = ALL
    sort_column: Optional[str] = "created_at"
    sort_direction: str = "desc"
    page: int = 1

    def set_search(self, text: Optional[str]) -> None:
        self.search = (text or "").strip()
        self.page = 1

    def set_status_filter(self, value: Any) -> None:
        self.status_filter = ALL if _is_all(value) else OrderStatus.parse(value)
        self.page = 1

    def set_action_filter(self, value: Any) -> None:
        self.action_filter = ALL if _is_all(value) else ActionType.parse(value)
        self.page = 1

    def set_sort(self, column: str, direction: str = "asc") -> None:
        if column not in SORT_COLUMNS:
            raise ValidationError(f"Unknown sort column: {column}")
        if direction not in ("asc", "desc"):
            raise ValidationError(f"Invalid sort direction: {direction}")
        self.sort_column = column
        self.sort_direction = direction
        self.page = 1

    def toggle_sort(self, column: str) -> None:
        """Clicking the active column flips direction; a new column starts ascending."""
        if column == self.sort_column:
            self.set_sort(column, "desc" if self.sort_direction == "asc" else "asc")
        else:
            self.set_sort(column, "asc")

    def next_page(self, total_pages: int) -> bool:
        if self.page < total_pages:
            self.page += 1
            return True
        return False

    def prev_page(self) -> bool:
        if self.page > 1:
            self.page -= 1
            return True
        return False

    def clamp(self, total_pages: int) -> int:
        """Pull the page back into range after the result set shrank."""
        self.page = min(max(1, self.page), max(1, total_pages))
        return self.page

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search": self.search,
            "status_filter": _wire(self.status_filter),
            "action_filter": _wire(self.action_filter),
            "sort_column": self.sort_column,
            "sort_direction": self.sort_direction,
            "page": self.page,
        }


def _is_all(value: Any) -> bool:
    return value is None or str(value).strip().lower() in ("", ALL)


def _wire(value: Union[str, OrderStatus, ActionType]) -> str:
    return value if isinstance(value, str) else value.value
