import asyncio
from types import SimpleNamespace

import pytest
from aiomqtt import MqttError


class FakeBroker:
    """Hands out FakeClients to ConnectionManager and records what they sent."""

    def __init__(self):
        self.clients = []
        self.fail_connects = 0
        self.fail_publish = False
        # payloads the client refuses locally, as paho does for oversized messages
        self.reject_payloads = set()
        # raised once by the next subscribe
        self.subscribe_error = None

    def factory(self, cfg):
        c = FakeClient(self)
        self.clients.append(c)
        return c

    @property
    def last(self):
        return self.clients[-1]

    def calls(self, kind):
        return [c[1:] for client in self.clients for c in client.calls if c[0] == kind]


class FakeClient:
    """Just enough of aiomqtt.Client for ConnectionManager."""

    def __init__(self, broker):
        self.broker = broker
        self.calls = []
        self.closed = False
        self._inbox = asyncio.Queue()

    async def __aenter__(self):
        if self.broker.fail_connects > 0:
            self.broker.fail_connects -= 1
            raise MqttError("connection refused")
        self.calls.append(("connect",))
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        self._inbox.put_nowait(None)

    async def subscribe(self, topic):
        if self.broker.subscribe_error is not None:
            exc, self.broker.subscribe_error = self.broker.subscribe_error, None
            raise exc
        if not topic:
            raise ValueError("Invalid topic.")
        self.calls.append(("subscribe", topic))

    async def unsubscribe(self, topic):
        self.calls.append(("unsubscribe", topic))

    async def publish(self, topic, payload, qos=0, retain=False):
        if not topic or "#" in topic or "+" in topic:
            raise ValueError("Publish topic cannot contain wildcards.")
        if payload in self.broker.reject_payloads:
            raise ValueError("Payload too large.")
        if self.broker.fail_publish:
            raise MqttError("socket closed")
        self.calls.append(("publish", topic, payload))

    @property
    def messages(self):
        return self._iter()

    async def _iter(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            topic, payload = item
            yield SimpleNamespace(topic=topic, payload=payload.encode("utf-8"))

    # test helpers
    def deliver(self, topic, payload):
        self._inbox.put_nowait((topic, payload))

    def drop(self, exc=None):
        self._inbox.put_nowait(exc or MqttError("connection lost"))


@pytest.fixture
def broker():
    return FakeBroker()
