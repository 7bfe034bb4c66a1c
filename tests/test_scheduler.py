"""Tests for the polling scheduler."""

from __future__ import annotations

import asyncio

import msgspec
import pytest

from fakes import FakeBrokerChannel, FakeEndpointSession, wait_until
from opcuagateway.config.model import MetricDescriptor
from opcuagateway.services.scheduler import PollingScheduler
from opcuagateway.state.stats import GatewayStats


@pytest.mark.asyncio
async def test_tick_publishes_value_payload(temp_metric: MetricDescriptor) -> None:
    session = FakeEndpointSession({"ns=1;s=Temp": 21.5})
    channel = FakeBrokerChannel()
    stats = GatewayStats()
    scheduler = PollingScheduler(session, channel, stats)

    scheduler.register(temp_metric)
    try:
        await wait_until(lambda: len(channel.published) >= 1)
        # interval is one second: nothing else may arrive before the next tick.
        await asyncio.sleep(0.05)
    finally:
        await scheduler.stop()

    assert channel.published == [("plant/temp", b'{"value":21.5}')]
    counters = stats.counters(temp_metric)
    assert counters.reads == 1
    assert counters.publishes == 1
    assert counters.last_value == 21.5


@pytest.mark.asyncio
async def test_ticks_repeat_every_interval() -> None:
    metric = MetricDescriptor(node_id="ns=2;i=7", topic="line/speed", mode="pub", interval=20)
    session = FakeEndpointSession({"ns=2;i=7": 3})
    channel = FakeBrokerChannel()
    scheduler = PollingScheduler(session, channel)

    scheduler.register(metric)
    try:
        await wait_until(lambda: len(channel.published) >= 4)
    finally:
        await scheduler.stop()

    assert all(msgspec.json.decode(payload) == {"value": 3} for payload in channel.payloads("line/speed"))


@pytest.mark.asyncio
async def test_read_failure_does_not_delay_other_metric() -> None:
    broken = MetricDescriptor(node_id="ns=1;s=Broken", topic="plant/broken", mode="pub", interval=20)
    slow = MetricDescriptor(node_id="ns=1;s=Slow", topic="plant/slow", mode="pub", interval=20)
    healthy = MetricDescriptor(node_id="ns=1;s=Flow", topic="plant/flow", mode="pub", interval=20)
    session = FakeEndpointSession({"ns=1;s=Slow": 1.0, "ns=1;s=Flow": 7.25})
    session.read_failures.add("ns=1;s=Broken")
    session.read_delays["ns=1;s=Slow"] = 30.0
    channel = FakeBrokerChannel()
    stats = GatewayStats()
    scheduler = PollingScheduler(session, channel, stats)

    for metric in (broken, slow, healthy):
        scheduler.register(metric)
    try:
        await wait_until(lambda: len(channel.payloads("plant/flow")) >= 3)
    finally:
        await scheduler.stop()

    assert channel.payloads("plant/broken") == []
    assert channel.payloads("plant/slow") == []
    assert stats.counters(broken).read_errors >= 1
    assert stats.counters(healthy).publishes >= 3


@pytest.mark.asyncio
async def test_slow_reads_overlap_instead_of_skipping_ticks() -> None:
    metric = MetricDescriptor(node_id="ns=1;s=Slow", topic="plant/slow", mode="pub", interval=20)
    session = FakeEndpointSession({"ns=1;s=Slow": 1.0})
    session.read_delays["ns=1;s=Slow"] = 0.5
    scheduler = PollingScheduler(session, FakeBrokerChannel())

    scheduler.register(metric)
    try:
        await wait_until(lambda: scheduler.inflight >= 3)
    finally:
        await scheduler.stop()

    assert scheduler.inflight == 0


@pytest.mark.asyncio
async def test_non_numeric_value_is_not_published(temp_metric: MetricDescriptor) -> None:
    session = FakeEndpointSession({"ns=1;s=Temp": "on"})
    channel = FakeBrokerChannel()
    stats = GatewayStats()
    scheduler = PollingScheduler(session, channel, stats)

    await scheduler.tick(temp_metric)
    session.values["ns=1;s=Temp"] = True
    await scheduler.tick(temp_metric)

    assert channel.published == []
    assert stats.counters(temp_metric).read_errors == 2


@pytest.mark.asyncio
async def test_publish_failure_is_counted_and_next_tick_runs(temp_metric: MetricDescriptor) -> None:
    session = FakeEndpointSession({"ns=1;s=Temp": 20.0})
    channel = FakeBrokerChannel()
    channel.publish_failures.add("plant/temp")
    stats = GatewayStats()
    scheduler = PollingScheduler(session, channel, stats)

    await scheduler.tick(temp_metric)
    channel.publish_failures.clear()
    await scheduler.tick(temp_metric)

    assert stats.counters(temp_metric).publish_errors == 1
    assert channel.published == [("plant/temp", b'{"value":20.0}')]


@pytest.mark.asyncio
async def test_stop_cancels_loops_and_rejects_new_metrics(temp_metric: MetricDescriptor) -> None:
    session = FakeEndpointSession({"ns=1;s=Temp": 21.5})
    channel = FakeBrokerChannel()
    scheduler = PollingScheduler(session, channel)
    task = scheduler.register(temp_metric)
    await wait_until(lambda: len(channel.published) >= 1)

    await scheduler.stop()

    assert task.cancelled()
    with pytest.raises(RuntimeError):
        scheduler.register(temp_metric)


@pytest.mark.asyncio
async def test_register_rejects_subscribe_only_metric(setpoint_metric: MetricDescriptor) -> None:
    scheduler = PollingScheduler(FakeEndpointSession(), FakeBrokerChannel())

    with pytest.raises(ValueError):
        scheduler.register(setpoint_metric)
