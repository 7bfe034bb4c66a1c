"""Runtime counters shared by the scheduler, router and exporter."""

from __future__ import annotations

import time
from typing import Any

import msgspec

from ..config.model import MetricDescriptor

COUNTER_FIELDS = (
    "reads",
    "read_errors",
    "publishes",
    "publish_errors",
    "writes",
    "write_errors",
    "decode_errors",
    "subscribe_errors",
)


class MetricCounters(msgspec.Struct):
    """Per-metric operation counters."""

    node_id: str
    topic: str
    mode: str
    reads: int = 0
    read_errors: int = 0
    publishes: int = 0
    publish_errors: int = 0
    writes: int = 0
    write_errors: int = 0
    decode_errors: int = 0
    subscribe_errors: int = 0
    last_value: float | None = None


class GatewayStats:
    """Counters and lifecycle state for one gateway instance."""

    def __init__(self) -> None:
        self.lifecycle_state = "unconnected"
        self.started_at = time.time()
        self.unrouted_messages = 0
        self._metrics: dict[str, MetricCounters] = {}

    def counters(self, metric: MetricDescriptor) -> MetricCounters:
        entry = self._metrics.get(metric.key)
        if entry is None:
            entry = MetricCounters(node_id=metric.node_id, topic=metric.topic, mode=metric.mode)
            self._metrics[metric.key] = entry
        return entry

    def record(self, metric: MetricDescriptor, counter: str, value: Any = None) -> None:
        if counter not in COUNTER_FIELDS:
            raise ValueError(f"unknown counter {counter}")
        entry = self.counters(metric)
        setattr(entry, counter, getattr(entry, counter) + 1)
        if value is not None:
            entry.last_value = float(value)

    def metrics(self) -> list[MetricCounters]:
        return list(self._metrics.values())

    def snapshot(self) -> dict[str, Any]:
        return {
            "lifecycle_state": self.lifecycle_state,
            "uptime_seconds": max(0.0, time.time() - self.started_at),
            "unrouted_messages": self.unrouted_messages,
            "metrics": [msgspec.structs.asdict(entry) for entry in self._metrics.values()],
        }


__all__ = ["COUNTER_FIELDS", "GatewayStats", "MetricCounters"]
