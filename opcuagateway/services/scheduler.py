"""Polling scheduler: endpoint reads republished to the broker.

Each ``pub``/``pubsub`` metric gets its own asyncio task that launches a tick
every ``interval``. Ticks are separate tasks so a slow or failing read never
holds back the next tick or any other metric; overlapping ticks of the same
metric are allowed.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING

from ..config.model import MetricDescriptor
from ..errors import BrokerPublishError, EndpointReadError, PayloadValidationError
from ..state.stats import GatewayStats
from .payloads import encode_value

if TYPE_CHECKING:
    from ..transport.mqtt import BrokerChannel
    from ..transport.opcua import EndpointSession

logger = logging.getLogger("opcuagateway.scheduler")


class PollingScheduler:
    """Runs one repeating read-and-forward task per published metric."""

    def __init__(
        self,
        session: EndpointSession,
        channel: BrokerChannel,
        stats: GatewayStats | None = None,
    ) -> None:
        self._session = session
        self._channel = channel
        self._stats = stats or GatewayStats()
        self._loops: list[tuple[MetricDescriptor, asyncio.Task[None]]] = []
        self._inflight: set[asyncio.Task[None]] = set()
        self._stopped = False

    @property
    def metrics(self) -> list[MetricDescriptor]:
        return [metric for metric, _ in self._loops]

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def register(self, metric: MetricDescriptor) -> asyncio.Task[None]:
        """Start polling *metric*; the first tick fires immediately."""
        if self._stopped:
            raise RuntimeError("scheduler already stopped")
        if not metric.publishes:
            raise ValueError(f"metric {metric.node_id} is not in a publishing mode")
        task = asyncio.create_task(
            self._run_metric(metric),
            name=f"poll:{metric.node_id}->{metric.topic}",
        )
        self._loops.append((metric, task))
        logger.info(
            "Polling %s every %.0f ms into topic %s",
            metric.node_id,
            metric.interval,
            metric.topic,
        )
        return task

    async def _run_metric(self, metric: MetricDescriptor) -> None:
        loop = asyncio.get_running_loop()
        period = metric.interval_seconds
        next_tick = loop.time()
        while True:
            self._spawn_tick(metric)
            next_tick += period
            now = loop.time()
            if next_tick <= now:
                # Fell behind (blocked loop); skip missed slots, no catch-up burst.
                missed = math.floor((now - next_tick) / period) + 1
                next_tick += missed * period
            await asyncio.sleep(next_tick - now)

    def _spawn_tick(self, metric: MetricDescriptor) -> None:
        task = asyncio.create_task(self.tick(metric), name=f"tick:{metric.node_id}")
        self._inflight.add(task)
        task.add_done_callback(self._tick_done)

    def _tick_done(self, task: asyncio.Task[None]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unexpected error in %s: %s", task.get_name(), exc, exc_info=exc)

    async def tick(self, metric: MetricDescriptor) -> None:
        """Read *metric* once and publish ``{"value": v}`` to its topic."""
        try:
            value = await self._session.read(metric.node_id)
        except EndpointReadError as exc:
            self._stats.record(metric, "read_errors")
            logger.error("Error reading from %s: %s", metric.node_id, exc)
            return
        self._stats.record(metric, "reads")
        logger.debug("Read value from %s: %s", metric.node_id, value)

        try:
            payload = encode_value(value)
        except PayloadValidationError as exc:
            self._stats.record(metric, "read_errors")
            logger.error("Cannot forward value from %s: %s", metric.node_id, exc.message)
            return

        try:
            await self._channel.publish(metric.topic, payload)
        except BrokerPublishError as exc:
            self._stats.record(metric, "publish_errors")
            logger.error("Failed to publish to topic %s: %s", metric.topic, exc)
            return
        self._stats.record(metric, "publishes", value)
        logger.debug("Published to topic %s: %s", metric.topic, payload.decode("utf-8"))

    async def stop(self) -> None:
        """Stop scheduling new ticks and cancel the ones still in flight."""
        self._stopped = True
        tasks = [task for _, task in self._loops] + list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        logger.info("Polling scheduler stopped (%d metrics).", len(self._loops))


__all__ = ["PollingScheduler"]
