"""Prometheus exporter for gateway counters."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterator
from http import HTTPStatus
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import (
    CounterMetricFamily,
    GaugeMetricFamily,
    InfoMetricFamily,
)
from prometheus_client.registry import Collector

from . import __version__
from .state.stats import COUNTER_FIELDS, GatewayStats

logger = logging.getLogger("opcuagateway.metrics")

_METRIC_LABELS = ("node_id", "topic", "mode")
_TEXT_PLAIN = "text/plain; charset=utf-8"


class _GatewayStatsCollector(Collector):
    """Prometheus collector projecting GatewayStats on every scrape."""

    def __init__(self, stats: GatewayStats) -> None:
        self._stats = stats

    def collect(self) -> Iterator[Any]:
        info = InfoMetricFamily("opcuagateway", "OPC UA MQTT gateway build and lifecycle")
        info.add_metric((), {"version": __version__, "state": self._stats.lifecycle_state})
        yield info

        snapshot = self._stats.snapshot()
        uptime = GaugeMetricFamily("opcuagateway_uptime_seconds", "Seconds since the gateway started")
        uptime.add_metric((), snapshot["uptime_seconds"])
        yield uptime

        unrouted = CounterMetricFamily(
            "opcuagateway_unrouted_messages",
            "Inbound MQTT messages with no matching metric",
        )
        unrouted.add_metric((), float(snapshot["unrouted_messages"]))
        yield unrouted

        entries = self._stats.metrics()
        for field in COUNTER_FIELDS:
            family = CounterMetricFamily(
                f"opcuagateway_{field}",
                f"Per-metric {field.replace('_', ' ')}",
                labels=_METRIC_LABELS,
            )
            for entry in entries:
                family.add_metric((entry.node_id, entry.topic, entry.mode), float(getattr(entry, field)))
            yield family

        last_value = GaugeMetricFamily(
            "opcuagateway_last_value",
            "Most recent value forwarded in either direction",
            labels=_METRIC_LABELS,
        )
        for entry in entries:
            if entry.last_value is not None:
                last_value.add_metric((entry.node_id, entry.topic, entry.mode), entry.last_value)
        yield last_value


class PrometheusExporter:
    """Serve GatewayStats in the Prometheus text format on ``/metrics``.

    Minimal HTTP/1.1 responder on the gateway's own event loop:
    one request per connection, GET only.
    """

    PATHS = frozenset({"/", "/metrics"})

    def __init__(self, stats: GatewayStats, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._server: asyncio.Server | None = None
        self._registry = CollectorRegistry()
        self._registry.register(_GatewayStatsCollector(stats))

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""
        if self._server is not None:
            for sock in self._server.sockets:
                address = sock.getsockname()
                if isinstance(address, tuple) and len(address) >= 2:
                    return int(address[1])
        return self._port

    async def start(self) -> None:
        if self._server is None:
            self._server = await asyncio.start_server(self._serve_request, self._host, self._port)
            logger.info("Prometheus exporter listening on %s:%d", self._host, self.port)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()
            logger.info("Prometheus exporter stopped")

    def render(self) -> bytes:
        return generate_latest(self._registry)

    async def _serve_request(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            status, body, content_type = await self._respond(reader)
            head = (
                f"HTTP/1.1 {status.value} {status.phrase}\r\n"
                f"Content-Type: {content_type}\r\n"
                f"Content-Length: {len(body)}\r\n"
                "Connection: close\r\n\r\n"
            )
            writer.write(head.encode("ascii") + body)
            await writer.drain()
        except (ConnectionError, ValueError) as exc:
            logger.warning("Prometheus scrape failed: %s", exc)
        finally:
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()

    async def _respond(self, reader: asyncio.StreamReader) -> tuple[HTTPStatus, bytes, str]:
        request_line = (await reader.readline()).decode("latin-1").split()
        # Drain headers up to the blank line.
        while (await reader.readline()).strip():
            pass
        if len(request_line) < 2:
            return HTTPStatus.BAD_REQUEST, b"", _TEXT_PLAIN
        method, path = request_line[0], request_line[1].split("?", 1)[0]
        if method != "GET":
            return HTTPStatus.METHOD_NOT_ALLOWED, b"", _TEXT_PLAIN
        if path not in self.PATHS:
            return HTTPStatus.NOT_FOUND, b"", _TEXT_PLAIN
        return HTTPStatus.OK, self.render(), CONTENT_TYPE_LATEST


__all__ = ["PrometheusExporter"]
