"""
Resilient remote client for the order system of record.

Single endpoint, request/response:
    request  = {"action": str, "id"?: str, "data"?: dict, ...}
    response = {"status": "success" | "too_many_requests" | other,
                "data"?: Any, "message"?: str}

Only ``too_many_requests`` is retried, with exponential backoff. Transport
failures surface immediately as NetworkError.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests

from .config import Config
from .errors import NetworkError, OperationFailed, RateLimited

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_TOO_MANY_REQUESTS = "too_many_requests"

ACTIONS = (
    "getAllOrders",
    "addOrder",
    "editOrder",
    "deleteOrder",
    "closeOrder",
    "updateKanbanStatus",
    "addNewContainer",
    "getContainerHistory",
)


class HttpTransport:
    """POSTs JSON payloads with requests, off the event loop."""

    def __init__(self, endpoint_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = self.session.post(
                self.endpoint_url,
                data=json.dumps(payload),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Request to {payload.get('action')} failed: {e}") from e

        if not r.ok:
            raise NetworkError(f"API response was not ok, status: {r.status_code}")
        try:
            body = r.json()
        except ValueError as e:
            raise NetworkError("API response was not valid JSON") from e
        if not isinstance(body, dict):
            raise NetworkError("API response was not a JSON object")
        return body

    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._post, payload)


class RemoteClient:
    """
    Sends operations to the remote endpoint.

    The in-flight counter is per logical call (retries included), so
    overlapping calls keep the loading indicator on until the last settles.
    """

    def __init__(
        self,
        transport,
        backoff_base: float = 1.0,
        max_retries: int = 5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.transport = transport
        self.backoff_base = backoff_base
        self.max_retries = max_retries
        self._sleep = sleep
        self.in_flight = 0
        self._loading_listeners: List[Callable[[int], None]] = []

    @classmethod
    def from_config(cls, config: Config) -> "RemoteClient":
        transport = HttpTransport(config.require_endpoint(), timeout=config.request_timeout)
        return cls(transport, backoff_base=config.backoff_base, max_retries=config.max_retries)

    @property
    def loading(self) -> bool:
        return self.in_flight > 0

    def subscribe_loading(self, callback: Callable[[int], None]) -> None:
        """Register a callback receiving the in-flight count on every change."""
        self._loading_listeners.append(callback)

    def _set_in_flight(self, delta: int) -> None:
        self.in_flight += delta
        for callback in list(self._loading_listeners):
            try:
                callback(self.in_flight)
            except Exception as e:
                logger.error(f"Error in loading callback: {e}", exc_info=True)

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    async def call(self, action: str, **params) -> Any:
        """
        Send one operation and return the response's ``data``.

        Raises:
            RateLimited: every attempt answered too_many_requests.
            OperationFailed: the server answered with any other non-success status.
            NetworkError: the transport failed (never retried).
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        payload = {"action": action}
        payload.update({k: v for k, v in params.items() if v is not None})

        self._set_in_flight(+1)
        try:
            for attempt in range(self.max_retries):
                response = await self.transport.send(payload)
                status = response.get("status")

                if status == STATUS_SUCCESS:
                    return response.get("data")

                if status != STATUS_TOO_MANY_REQUESTS:
                    message = response.get("message") or ""
                    logger.error(f"{action} rejected by server: {message or status}")
                    raise OperationFailed(message, response=response)

                if attempt + 1 == self.max_retries:
                    break
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Too many requests for {action} "
                    f"(attempt {attempt + 1}/{self.max_retries}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

            logger.error(f"{action} still rate limited after {self.max_retries} attempts")
            raise RateLimited(f"{action} was rate limited {self.max_retries} times")
        finally:
            self._set_in_flight(-1)

    # ── Action wrappers ──────────────────────────────────────────────────

    async def get_all_orders(self) -> Any:
        return await self.call("getAllOrders")

    async def add_order(self, data: Dict[str, Any]) -> Any:
        return await self.call("addOrder", data=data)

    async def edit_order(self, order_id: str, data: Dict[str, Any]) -> Any:
        return await self.call("editOrder", id=order_id, data=data)

    async def delete_order(self, order_id: str) -> Any:
        return await self.call("deleteOrder", id=order_id)

    async def close_order(self, order_id: str, data: Dict[str, Any]) -> Any:
        return await self.call("closeOrder", id=order_id, data=data)

    async def update_kanban_status(self, order_id: str, new_status: str) -> Any:
        return await self.call("updateKanbanStatus", id=order_id, newStatus=new_status)

    async def add_new_container(self, container_number: str) -> Any:
        return await self.call("addNewContainer", containerNumber=container_number)

    async def get_container_history(self, container_number: str) -> Any:
        return await self.call("getContainerHistory", containerNumber=container_number)
