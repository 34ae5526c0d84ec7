"""Shared fixtures: fake transport, fixed clock, record factory."""

import asyncio
from datetime import datetime, timedelta

import pytest

from containerboard.client import RemoteClient
from containerboard.config import Config
from containerboard.dashboard import Dashboard
from containerboard.events import EventBus, Notifier
from containerboard.mutations import MutationCoordinator
from containerboard.schema import ActionType, OrderRecord, OrderStatus
from containerboard.store import RecordStore

NOW = datetime(2024, 5, 15, 12, 0, 0)


def ok(data=None):
    return {"status": "success", "data": data}


def busy():
    return {"status": "too_many_requests"}


def rejected(message=""):
    return {"status": "error", "message": message}


class FakeTransport:
    """
    Stands in for HttpTransport.

    ``responses`` is consumed in order; each item is a response dict, an
    exception to raise, or a callable taking the payload. When empty, every
    call succeeds with no data. Set ``gate`` to an asyncio.Event to hold
    calls until the test releases them.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.gate = None

    def queue(self, *responses):
        self.responses.extend(responses)

    async def send(self, payload):
        self.calls.append(payload)
        if self.gate is not None:
            await self.gate.wait()
        item = self.responses.pop(0) if self.responses else ok()
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(payload)
        return item

    def actions(self):
        return [c["action"] for c in self.calls]


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_record(order_id="A", **overrides) -> OrderRecord:
    values = dict(
        order_id=order_id,
        document_number=f"DOC-{order_id}",
        customer="Acme",
        agent="Dana",
        address="1 Harbor Rd",
        action_type=ActionType.PICKUP,
        containers=("C-1",),
        created_at=NOW - timedelta(days=10),
        status=OrderStatus.OPEN,
    )
    values.update(overrides)
    return OrderRecord(**values)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleeper():
    return FakeSleep()


@pytest.fixture
def client(transport, sleeper):
    return RemoteClient(transport, backoff_base=0.5, max_retries=5, sleep=sleeper)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def notifier(bus):
    return Notifier(bus)


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def coordinator(client, store, notifier, bus):
    return MutationCoordinator(client, store, notifier, bus, clock=lambda: NOW)


@pytest.fixture
def dashboard(client):
    return Dashboard(Config(), client=client, clock=lambda: NOW)


def severities(notifier):
    return [n.severity for n in notifier.history]
