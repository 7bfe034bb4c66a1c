"""In-memory endpoint and broker collaborators for gateway tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from opcuagateway.errors import (
    BrokerConnectError,
    BrokerPublishError,
    BrokerSubscribeError,
    EndpointConnectError,
    EndpointReadError,
    EndpointWriteError,
    SessionOpenError,
)

_END_OF_STREAM = object()


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll *predicate* on the running loop until it holds or *timeout* expires."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class FakeEndpointSession:
    def __init__(self, values: dict[str, Any] | None = None, journal: list[str] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})
        self.journal = journal if journal is not None else []
        self.read_failures: set[str] = set()
        self.write_failures: set[str] = set()
        self.read_delays: dict[str, float] = {}
        self.reads: list[str] = []
        self.writes: list[tuple[str, Any, str]] = []
        self.close_error: Exception | None = None
        self.closed = False

    async def read(self, node_id: str) -> Any:
        self.reads.append(node_id)
        delay = self.read_delays.get(node_id)
        if delay:
            await asyncio.sleep(delay)
        if node_id in self.read_failures:
            raise EndpointReadError(node_id, "BadNodeIdUnknown")
        return self.values[node_id]

    async def write(self, node_id: str, value: Any, datatype: str) -> None:
        if node_id in self.write_failures:
            raise EndpointWriteError(node_id, "BadNotWritable")
        self.writes.append((node_id, value, datatype))
        self.values[node_id] = value

    async def close(self) -> None:
        self.journal.append("session.close")
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeEndpointConnection:
    def __init__(
        self,
        session: FakeEndpointSession | None = None,
        *,
        connect_error: bool = False,
        session_error: bool = False,
        journal: list[str] | None = None,
    ) -> None:
        self.journal = journal if journal is not None else []
        self.session = session or FakeEndpointSession(journal=self.journal)
        self.session.journal = self.journal
        self.connect_error = connect_error
        self.session_error = session_error
        self.connected = False

    async def connect(self) -> None:
        self.journal.append("endpoint.connect")
        if self.connect_error:
            raise EndpointConnectError("cannot connect to opc.tcp://localhost:4840: Connection refused")
        self.connected = True

    async def open_session(self) -> FakeEndpointSession:
        self.journal.append("endpoint.open_session")
        if self.session_error:
            raise SessionOpenError("cannot activate session: BadUserAccessDenied")
        return self.session

    async def disconnect(self) -> None:
        self.journal.append("endpoint.disconnect")
        self.connected = False


class FakeBrokerChannel:
    """Broker channel backed by an asyncio.Queue of inbound messages.

    With ``echo=True`` every publish on a subscribed topic is delivered back
    to the channel, the way a real broker would.
    """

    def __init__(
        self,
        *,
        connect_error: bool = False,
        echo: bool = False,
        journal: list[str] | None = None,
    ) -> None:
        self.journal = journal if journal is not None else []
        self.connect_error = connect_error
        self.echo = echo
        self.publish_failures: set[str] = set()
        self.subscribe_failures: set[str] = set()
        self.published: list[tuple[str, bytes]] = []
        self.subscriptions: list[str] = []
        self.connected = False
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    @property
    def address(self) -> str:
        return "localhost:1883"

    async def connect(self) -> None:
        self.journal.append("broker.connect")
        if self.connect_error:
            raise BrokerConnectError("cannot connect to MQTT broker localhost:1883: Connection refused")
        self.connected = True

    async def publish(self, topic: str, payload: bytes) -> None:
        if topic in self.publish_failures:
            raise BrokerPublishError(topic, "Disconnected during message iteration")
        self.published.append((topic, payload))
        if self.echo and topic in self.subscriptions:
            self.inject(topic, payload)

    async def subscribe(self, topic: str) -> None:
        if topic in self.subscribe_failures:
            raise BrokerSubscribeError(topic, "Not authorized")
        self.subscriptions.append(topic)

    def inject(self, topic: str, payload: bytes) -> None:
        self._inbound.put_nowait((topic, payload))

    def fail_stream(self, exc: Exception) -> None:
        self._inbound.put_nowait(exc)

    async def messages(self) -> AsyncIterator[tuple[str, bytes]]:
        while True:
            item = await self._inbound.get()
            if item is _END_OF_STREAM:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.journal.append("broker.close")
        self.connected = False
        self._inbound.put_nowait(_END_OF_STREAM)

    def payloads(self, topic: str) -> list[bytes]:
        return [payload for published_topic, payload in self.published if published_topic == topic]
