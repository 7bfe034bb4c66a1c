"""Tests for gateway statistics and the Prometheus exporter."""

from __future__ import annotations

import asyncio

import pytest

from opcuagateway.config.model import MetricDescriptor
from opcuagateway.metrics import PrometheusExporter
from opcuagateway.state.stats import GatewayStats


def _stats(temp_metric: MetricDescriptor) -> GatewayStats:
    stats = GatewayStats()
    stats.lifecycle_state = "running"
    stats.record(temp_metric, "reads")
    stats.record(temp_metric, "publishes", 21.5)
    stats.record(temp_metric, "read_errors")
    stats.unrouted_messages = 2
    return stats


def test_record_tracks_counters_and_last_value(temp_metric: MetricDescriptor) -> None:
    stats = _stats(temp_metric)

    counters = stats.counters(temp_metric)
    assert (counters.reads, counters.publishes, counters.read_errors) == (1, 1, 1)
    assert counters.last_value == 21.5

    snapshot = stats.snapshot()
    assert snapshot["lifecycle_state"] == "running"
    assert snapshot["metrics"][0]["node_id"] == "ns=1;s=Temp"

    with pytest.raises(ValueError):
        stats.record(temp_metric, "bogus")


def test_render_exposes_labelled_counters(temp_metric: MetricDescriptor) -> None:
    exporter = PrometheusExporter(_stats(temp_metric), "127.0.0.1", 0)

    text = exporter.render().decode("utf-8")

    assert 'opcuagateway_reads_total{mode="pub",node_id="ns=1;s=Temp",topic="plant/temp"} 1.0' in text
    assert "opcuagateway_read_errors_total" in text
    assert "opcuagateway_unrouted_messages_total 2.0" in text
    assert 'opcuagateway_last_value{mode="pub",node_id="ns=1;s=Temp",topic="plant/temp"} 21.5' in text
    assert 'state="running"' in text


@pytest.mark.asyncio
async def test_exporter_serves_metrics_over_http(temp_metric: MetricDescriptor) -> None:
    exporter = PrometheusExporter(_stats(temp_metric), "127.0.0.1", 0)
    await exporter.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", exporter.port)
        writer.write(b"GET /metrics HTTP/1.1\r\nHost: localhost\r\n\r\n")
        await writer.drain()
        response = await asyncio.wait_for(reader.read(), timeout=1.0)
        writer.close()
        await writer.wait_closed()

        reader, writer = await asyncio.open_connection("127.0.0.1", exporter.port)
        writer.write(b"GET /nope HTTP/1.1\r\n\r\n")
        await writer.drain()
        not_found = await asyncio.wait_for(reader.read(), timeout=1.0)
        writer.close()
        await writer.wait_closed()
    finally:
        await exporter.stop()

    assert response.startswith(b"HTTP/1.1 200 OK")
    assert b"opcuagateway_publishes_total" in response
    assert not_found.startswith(b"HTTP/1.1 404")
