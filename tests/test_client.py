"""
Tests for the resilient remote client and its HTTP transport.
"""
import asyncio
import json

import pytest
import requests

from containerboard.client import HttpTransport, RemoteClient
from containerboard.config import Config
from containerboard.errors import ConfigError, NetworkError, OperationFailed, RateLimited

from conftest import FakeSleep, FakeTransport, busy, ok, rejected, run


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RemoteClient
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_success_returns_data(client, transport):
    transport.queue(ok([{"id": "A"}]))
    assert run(client.get_all_orders()) == [{"id": "A"}]
    assert transport.calls == [{"action": "getAllOrders"}]


def test_payload_carries_action_fields(client, transport):
    run(client.update_kanban_status("A", "Treated"))
    run(client.add_new_container("C-9"))
    run(client.edit_order("A", {"notes": "x"}))
    assert transport.calls[0] == {"action": "updateKanbanStatus", "id": "A", "newStatus": "Treated"}
    assert transport.calls[1] == {"action": "addNewContainer", "containerNumber": "C-9"}
    assert transport.calls[2] == {"action": "editOrder", "id": "A", "data": {"notes": "x"}}


def test_unknown_action_rejected(client, transport):
    with pytest.raises(ValueError):
        run(client.call("dropTables"))
    assert transport.calls == []


def test_rate_limited_after_retry_cap(client, transport, sleeper):
    """Five consecutive too_many_requests: RateLimited, no wait after the last attempt."""
    transport.queue(*[busy() for _ in range(5)])
    with pytest.raises(RateLimited):
        run(client.get_all_orders())
    assert len(transport.calls) == 5
    assert sleeper.delays == [0.5, 1.0, 2.0, 4.0]


def test_rate_limit_recovers(client, transport, sleeper):
    transport.queue(busy(), busy(), ok("done"))
    assert run(client.delete_order("A")) == "done"
    assert sleeper.delays == [0.5, 1.0]
    assert len(transport.calls) == 3


def test_rejection_carries_server_message(client, transport, sleeper):
    transport.queue(rejected("Document number already exists"))
    with pytest.raises(OperationFailed) as exc_info:
        run(client.add_order({"customer": "Acme"}))
    assert exc_info.value.user_message == "Document number already exists"
    assert exc_info.value.response["status"] == "error"
    assert len(transport.calls) == 1
    assert sleeper.delays == []


def test_rejection_without_message_uses_generic_text(client, transport):
    transport.queue({"status": "error"})
    with pytest.raises(OperationFailed) as exc_info:
        run(client.delete_order("A"))
    assert exc_info.value.user_message == OperationFailed.default_message


def test_network_error_not_retried(client, transport, sleeper):
    transport.queue(NetworkError("timed out"))
    with pytest.raises(NetworkError):
        run(client.get_all_orders())
    assert len(transport.calls) == 1
    assert sleeper.delays == []
    assert client.in_flight == 0


def test_in_flight_counter_under_overlapping_calls(client, transport):
    """The loading indicator stays on until the last overlapping call settles."""
    seen = []
    client.subscribe_loading(seen.append)

    async def scenario():
        transport.gate = asyncio.Event()
        first = asyncio.create_task(client.get_all_orders())
        second = asyncio.create_task(client.delete_order("A"))
        await asyncio.sleep(0)
        assert client.in_flight == 2
        assert client.loading
        transport.gate.set()
        await asyncio.gather(first, second)

    run(scenario())
    assert seen == [1, 2, 1, 0]
    assert not client.loading


def test_counter_counts_logical_calls_not_retries(client, transport):
    seen = []
    client.subscribe_loading(seen.append)
    transport.queue(busy(), busy(), ok())
    run(client.get_all_orders())
    assert seen == [1, 0]


def test_from_config_requires_endpoint():
    with pytest.raises(ConfigError):
        RemoteClient.from_config(Config())


def test_from_config_builds_http_transport():
    cfg = Config(endpoint_url="https://orders.example.com/exec", backoff_base=2.0, max_retries=3)
    client = RemoteClient.from_config(cfg)
    assert isinstance(client.transport, HttpTransport)
    assert client.backoff_delay(2) == 8.0
    assert client.max_retries == 3


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# HttpTransport
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._body = body
        self._text = text

    def json(self):
        if self._text is not None:
            return json.loads(self._text)
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


class TestHttpTransport:
    """HTTP-level failures map to NetworkError."""

    def setup_method(self):
        self.url = "https://orders.example.com/exec"

    def test_posts_json_as_text_plain(self):
        session = FakeSession(FakeResponse(body={"status": "success", "data": 1}))
        transport = HttpTransport(self.url, timeout=5, session=session)
        assert run(transport.send({"action": "getAllOrders"})) == {"status": "success", "data": 1}
        post = session.posts[0]
        assert json.loads(post["data"]) == {"action": "getAllOrders"}
        assert post["headers"]["Content-Type"] == "text/plain;charset=utf-8"
        assert post["timeout"] == 5

    def test_http_error_status(self):
        transport = HttpTransport(self.url, session=FakeSession(FakeResponse(status_code=500)))
        with pytest.raises(NetworkError, match="500"):
            run(transport.send({"action": "getAllOrders"}))

    def test_invalid_json(self):
        transport = HttpTransport(self.url, session=FakeSession(FakeResponse(text="<html>")))
        with pytest.raises(NetworkError):
            run(transport.send({"action": "getAllOrders"}))

    def test_connection_failure(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        transport = HttpTransport(self.url, session=session)
        with pytest.raises(NetworkError):
            run(transport.send({"action": "getAllOrders"}))

    def test_client_does_not_retry_transport_failure(self):
        session = FakeSession(error=requests.Timeout("slow"))
        sleeper = FakeSleep()
        client = RemoteClient(HttpTransport(self.url, session=session), sleep=sleeper)
        with pytest.raises(NetworkError):
            run(client.get_all_orders())
        assert len(session.posts) == 1
        assert sleeper.delays == []
