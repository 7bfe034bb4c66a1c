"""Inbound router: broker messages written back to the endpoint.

The routing table maps a topic to every ``sub``/``pubsub`` metric whose
subscription succeeded. A single listener task drains the broker channel and
fans each message out to one write task per matching metric, so a slow
write never stalls the delivery path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from ..config.model import MetricDescriptor
from ..errors import BrokerSubscribeError, EndpointWriteError, PayloadValidationError
from ..state.stats import GatewayStats
from .payloads import decode_value

if TYPE_CHECKING:
    from ..transport.mqtt import BrokerChannel
    from ..transport.opcua import EndpointSession

logger = logging.getLogger("opcuagateway.router")


class InboundRouter:
    """Topic-based dispatcher for inbound MQTT messages."""

    def __init__(
        self,
        session: EndpointSession,
        channel: BrokerChannel,
        stats: GatewayStats | None = None,
    ) -> None:
        self._session = session
        self._channel = channel
        self._stats = stats or GatewayStats()
        self._routes: dict[str, list[MetricDescriptor]] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._listener: asyncio.Task[None] | None = None

    @property
    def routes(self) -> Mapping[str, tuple[MetricDescriptor, ...]]:
        return {topic: tuple(metrics) for topic, metrics in self._routes.items()}

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def register(self, metric: MetricDescriptor) -> bool:
        """Subscribe to *metric*'s topic and add it to the routing table.

        Returns False (after logging) when the subscription fails; the
        metric's sub direction then stays inactive.
        """
        if not metric.subscribes:
            raise ValueError(f"metric {metric.node_id} is not in a subscribing mode")
        try:
            await self._channel.subscribe(metric.topic)
        except BrokerSubscribeError as exc:
            self._stats.record(metric, "subscribe_errors")
            logger.error("Failed to subscribe to topic %s: %s", metric.topic, exc)
            return False
        self._routes.setdefault(metric.topic, []).append(metric)
        logger.info("Subscribed to topic %s (writes to %s)", metric.topic, metric.node_id)
        return True

    def start(self) -> asyncio.Task[None]:
        """Start the single delivery loop feeding :meth:`dispatch`."""
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen(), name="mqtt-inbound")
        return self._listener

    async def _listen(self) -> None:
        try:
            async for topic, payload in self._channel.messages():
                self.dispatch(topic, payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Broker loss ends delivery; ticks keep reporting their own publish errors.
            logger.error("MQTT inbound message loop interrupted: %s", exc)
            return
        logger.info("MQTT inbound message loop finished.")

    def dispatch(self, topic: str, payload: bytes) -> int:
        """Fan *payload* out to every metric routed on *topic*.

        Returns the number of write tasks started.
        """
        metrics = self._routes.get(topic)
        if not metrics:
            self._stats.unrouted_messages += 1
            logger.debug("Ignoring message on unrouted topic %s", topic)
            return 0
        for metric in metrics:
            task = asyncio.create_task(
                self.deliver(metric, payload),
                name=f"write:{topic}->{metric.node_id}",
            )
            self._inflight.add(task)
            task.add_done_callback(self._delivery_done)
        return len(metrics)

    def _delivery_done(self, task: asyncio.Task[None]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unexpected error in %s: %s", task.get_name(), exc, exc_info=exc)

    async def deliver(self, metric: MetricDescriptor, payload: bytes) -> None:
        """Decode one message and write its value to *metric*'s node."""
        try:
            value = decode_value(payload)
        except PayloadValidationError as exc:
            self._stats.record(metric, "decode_errors")
            logger.error("Error processing message for topic %s: %s", metric.topic, exc.message)
            return

        try:
            await self._session.write(metric.node_id, value, metric.datatype)
        except EndpointWriteError as exc:
            self._stats.record(metric, "write_errors")
            logger.error("Error writing to %s: %s", metric.node_id, exc)
            return
        self._stats.record(metric, "writes", value)
        logger.info("Written value %s to %s", value, metric.node_id)

    async def stop(self) -> None:
        tasks = list(self._inflight)
        if self._listener is not None:
            tasks.append(self._listener)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._listener = None
        logger.info("Inbound router stopped (%d topics).", len(self._routes))


__all__ = ["InboundRouter"]
