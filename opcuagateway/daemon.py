#!/usr/bin/env python3
"""Lifecycle coordinator and process entry point for the OPC UA MQTT gateway.

The coordinator owns every resource (broker channel, endpoint connection,
session, scheduler, router, exporter) and walks them through a small state
machine:

    unconnected -> endpoint_connected -> session_open -> running
        -> shutting_down -> terminated

Any startup failure moves to ``failed`` and surfaces as
:class:`~opcuagateway.errors.GatewayFatal`; only :func:`main` turns that into
a non-zero exit status.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, NoReturn

import uvloop
from transitions import Machine

from . import __version__
from .config.logging import configure_logging
from .config.model import RuntimeConfig
from .config.settings import load_runtime_config, log_config_summary
from .const import SHUTDOWN_GRACE_SECONDS
from .errors import (
    BrokerConnectError,
    ConfigError,
    EndpointConnectError,
    GatewayError,
    GatewayFatal,
    SessionOpenError,
)
from .metrics import PrometheusExporter
from .services.router import InboundRouter
from .services.scheduler import PollingScheduler
from .state.stats import GatewayStats
from .transport.mqtt import BrokerChannel
from .transport.opcua import EndpointConnection, EndpointSession

logger = logging.getLogger("opcuagateway")


class GatewayDaemon:
    """Connects the endpoint and the broker and bridges every metric."""

    STATE_UNCONNECTED = "unconnected"
    STATE_ENDPOINT_CONNECTED = "endpoint_connected"
    STATE_SESSION_OPEN = "session_open"
    STATE_RUNNING = "running"
    STATE_SHUTTING_DOWN = "shutting_down"
    STATE_TERMINATED = "terminated"
    STATE_FAILED = "failed"

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        endpoint_factory: Callable[[RuntimeConfig], Any] = EndpointConnection,
        broker_factory: Callable[[RuntimeConfig], Any] = BrokerChannel,
        stats: GatewayStats | None = None,
    ) -> None:
        self.config = config
        self.stats = stats or GatewayStats()
        self.channel: BrokerChannel = broker_factory(config)
        self.connection: EndpointConnection = endpoint_factory(config)
        self.session: EndpointSession | None = None
        self.scheduler: PollingScheduler | None = None
        self.router: InboundRouter | None = None
        self.exporter: PrometheusExporter | None = None
        self._stop_event = asyncio.Event()
        self.lifecycle_state = self.STATE_UNCONNECTED

        self.machine = Machine(
            model=self,
            states=[
                self.STATE_UNCONNECTED,
                self.STATE_ENDPOINT_CONNECTED,
                self.STATE_SESSION_OPEN,
                self.STATE_RUNNING,
                self.STATE_SHUTTING_DOWN,
                self.STATE_TERMINATED,
                self.STATE_FAILED,
            ],
            initial=self.STATE_UNCONNECTED,
            model_attribute="lifecycle_state",
            after_state_change="_publish_state",
            auto_transitions=False,
        )

        self.machine.add_transition("endpoint_ready", self.STATE_UNCONNECTED, self.STATE_ENDPOINT_CONNECTED)
        self.machine.add_transition("session_ready", self.STATE_ENDPOINT_CONNECTED, self.STATE_SESSION_OPEN)
        self.machine.add_transition("metrics_registered", self.STATE_SESSION_OPEN, self.STATE_RUNNING)
        self.machine.add_transition(
            "startup_failed",
            [self.STATE_UNCONNECTED, self.STATE_ENDPOINT_CONNECTED, self.STATE_SESSION_OPEN],
            self.STATE_FAILED,
        )
        self.machine.add_transition(
            "begin_shutdown",
            [
                self.STATE_UNCONNECTED,
                self.STATE_ENDPOINT_CONNECTED,
                self.STATE_SESSION_OPEN,
                self.STATE_RUNNING,
            ],
            self.STATE_SHUTTING_DOWN,
        )
        self.machine.add_transition("shutdown_complete", self.STATE_SHUTTING_DOWN, self.STATE_TERMINATED)

    def _publish_state(self) -> None:
        self.stats.lifecycle_state = self.lifecycle_state
        logger.debug("Gateway state is now %s", self.lifecycle_state)

    async def start(self) -> None:
        """Connect both sides and register every metric.

        Raises:
            GatewayFatal: broker connect, endpoint connect or session open
                failed. Whatever was already opened is closed first.
        """
        try:
            await self.channel.connect()
        except (BrokerConnectError, ConfigError) as exc:
            await self._fail(exc)

        try:
            await self.connection.connect()
        except EndpointConnectError as exc:
            await self._fail(exc)
        self.trigger("endpoint_ready")

        try:
            self.session = await self.connection.open_session()
        except SessionOpenError as exc:
            await self._fail(exc)
        self.trigger("session_ready")

        await self._register_metrics()
        await self._start_exporter()
        self.trigger("metrics_registered")
        logger.info(
            "Gateway running: %d published, %d subscribed metrics",
            len(self.scheduler.metrics) if self.scheduler else 0,
            sum(len(metrics) for metrics in self.router.routes.values()) if self.router else 0,
        )

    async def _register_metrics(self) -> None:
        assert self.session is not None
        self.scheduler = PollingScheduler(self.session, self.channel, self.stats)
        self.router = InboundRouter(self.session, self.channel, self.stats)

        # Subscriptions first so a pubsub metric never misses its own first value.
        for metric in self.config.subscribed_metrics:
            await self.router.register(metric)
        for metric in self.config.published_metrics:
            self.scheduler.register(metric)
        self.router.start()

    async def _start_exporter(self) -> None:
        if not self.config.exporter_enabled:
            return
        exporter = PrometheusExporter(self.stats, self.config.exporter_host, self.config.exporter_port)
        try:
            await exporter.start()
        except OSError as exc:
            logger.error("Prometheus exporter disabled: %s", exc)
            return
        self.exporter = exporter

    async def _fail(self, exc: GatewayError) -> NoReturn:
        state = self.lifecycle_state
        logger.critical("Gateway startup failed (%s): %s", state, exc)
        await self._close_resources()
        self.trigger("startup_failed")
        raise GatewayFatal(str(exc), state=state, cause=exc) from exc

    def request_shutdown(self) -> None:
        """Ask :meth:`run` to leave ``running``; safe to call from a signal handler."""
        if not self._stop_event.is_set():
            logger.info("Shutdown requested.")
        self._stop_event.set()

    async def run(self) -> None:
        """Start, bridge until :meth:`request_shutdown`, then shut down."""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop ticks and close session, endpoint and broker in that order."""
        if self.lifecycle_state in (self.STATE_SHUTTING_DOWN, self.STATE_TERMINATED, self.STATE_FAILED):
            return
        self.trigger("begin_shutdown")
        await self._close_resources()
        self.trigger("shutdown_complete")
        logger.info("OPC UA MQTT gateway stopped.")

    async def _close_resources(self) -> None:
        if self.scheduler is not None:
            await self._close_step("polling scheduler", self.scheduler.stop)
        if self.router is not None:
            await self._close_step("inbound router", self.router.stop)
        if self.session is not None:
            await self._close_step("OPC UA session", self.session.close)
        if self.connection.connected:
            await self._close_step("OPC UA endpoint", self.connection.disconnect)
        if self.channel.connected:
            await self._close_step("MQTT channel", self.channel.close)
        if self.exporter is not None:
            await self._close_step("Prometheus exporter", self.exporter.stop)

    async def _close_step(self, name: str, close: Callable[[], Awaitable[None]]) -> None:
        try:
            async with asyncio.timeout(SHUTDOWN_GRACE_SECONDS):
                await close()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Error closing %s: %s", name, exc)


async def _serve(daemon: GatewayDaemon) -> None:
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for signum in signals:
        loop.add_signal_handler(signum, daemon.request_shutdown)
    try:
        await daemon.run()
    finally:
        for signum in signals:
            loop.remove_signal_handler(signum)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opcua-mqtt-gateway",
        description="Bridge OPC UA variables to MQTT topics and back.",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="path to the TOML configuration file (default: $OPCUAGW_CONFIG or ./config.toml)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Sequence[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    args = _build_parser().parse_args(argv)
    try:
        config = load_runtime_config(args.config)
    except ConfigError as exc:
        print(f"opcua-mqtt-gateway: configuration error: {exc}", file=sys.stderr)
        sys.exit(1)
    configure_logging(config)
    log_config_summary(config)

    logger.info(
        "Starting OPC UA MQTT gateway %s. Endpoint: %s MQTT: %s:%d",
        __version__,
        config.opcua_url,
        config.mqtt_host,
        config.mqtt_port,
    )

    try:
        daemon = GatewayDaemon(config)
        asyncio.run(_serve(daemon), loop_factory=uvloop.new_event_loop)
        sys.exit(0)
    except GatewayFatal as exc:
        logger.critical("Gateway aborted in state %s: %s", exc.state, exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Gateway interrupted by user.")
        sys.exit(0)


if __name__ == "__main__":
    main()
