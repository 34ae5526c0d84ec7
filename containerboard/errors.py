"""
Error taxonomy for the dashboard core.

Local precondition failures (ValidationError, RecordBusy, NotFound) are raised
before any remote call is issued. Remote failures (NetworkError, RateLimited,
OperationFailed) abort a mutation and leave the record store untouched.
"""
from typing import Any, Dict, Optional


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


class DashboardError(Exception):
    """Base class for every error surfaced to the user."""

    default_message = "Operation failed."

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message

    @property
    def user_message(self) -> str:
        return self.message or self.default_message


class ValidationError(DashboardError):
    """A local precondition failed; no remote call was issued."""
    default_message = "Invalid input."


class RecordBusy(ValidationError):
    """Another mutation for the same record is still in flight."""
    default_message = "An update for this order is already in progress."


class NotFound(DashboardError):
    """The referenced record or container is not known locally."""
    default_message = "Order not found."


class NetworkError(DashboardError):
    """The remote endpoint was unreachable, timed out, or sent garbage."""
    default_message = "Network error, the server could not be reached."


class RateLimited(DashboardError):
    """The server kept answering too_many_requests past the retry budget."""
    default_message = "The server is busy, please try again shortly."


class OperationFailed(DashboardError):
    """The server rejected the action."""

    default_message = "The server rejected the operation."

    def __init__(self, message: str = "", response: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.response = response or {}


class InitialLoadFailed(DashboardError):
    """The first full refresh failed; the dashboard has no data to show."""

    default_message = "Failed to load orders."

    def __init__(self, cause: DashboardError):
        super().__init__(f"Failed to load orders: {cause.user_message}")
        self.cause = cause
