"""MQTT broker transport for the gateway."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import aiomqtt

from ..config.model import RuntimeConfig
from ..const import MQTT_TLS_MIN_VERSION, PUBLISH_QOS, PUBLISH_RETAIN, SUBSCRIBE_QOS
from ..errors import (
    BrokerConnectError,
    BrokerPublishError,
    BrokerSubscribeError,
    ConfigError,
)

logger = logging.getLogger("opcuagateway.mqtt")

_BROKER_ERRORS = (aiomqtt.MqttError, OSError, TimeoutError, asyncio.TimeoutError)

ClientFactory = Callable[..., Any]


def configure_tls_context(config: RuntimeConfig) -> ssl.SSLContext | None:
    """Create an ssl.SSLContext based on the provided RuntimeConfig."""
    if not config.tls_enabled:
        return None

    try:
        if config.mqtt_cafile:
            if not Path(config.mqtt_cafile).exists():
                raise ConfigError(f"MQTT TLS CA file missing: {config.mqtt_cafile}")
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=config.mqtt_cafile)
        else:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

        context.minimum_version = MQTT_TLS_MIN_VERSION

        if config.mqtt_tls_insecure:
            context.check_hostname = False

        if config.mqtt_certfile or config.mqtt_keyfile:
            if not (config.mqtt_certfile and config.mqtt_keyfile):
                raise ValueError("Both mqtt certfile and keyfile must be provided for mTLS.")
            context.load_cert_chain(config.mqtt_certfile, config.mqtt_keyfile)

        return context
    except (OSError, ssl.SSLError, ValueError) as exc:
        raise ConfigError(f"TLS setup failed: {exc}") from exc


def _payload_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class BrokerChannel:
    """One authenticated aiomqtt connection shared by every metric."""

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        client_factory: ClientFactory = aiomqtt.Client,
        serialize_access: bool = False,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._client: Any = None
        self._lock = asyncio.Lock() if serialize_access else None
        self._timeout = config.operation_timeout
        self.subscriptions: list[str] = []
        self.connected = False

    @property
    def address(self) -> str:
        return f"{self.config.mqtt_host}:{self.config.mqtt_port}"

    def _guard(self) -> contextlib.AbstractAsyncContextManager[Any]:
        return self._lock if self._lock is not None else contextlib.nullcontext()

    async def connect(self) -> None:
        tls_context = configure_tls_context(self.config)

        if not self.config.mqtt_user:
            logger.warning(
                "MQTT connecting without authentication (anonymous); "
                "consider setting mqtt username/password for production"
            )

        client = self._client_factory(
            hostname=self.config.mqtt_host,
            port=self.config.mqtt_port,
            username=self.config.mqtt_user,
            password=self.config.mqtt_pass,
            identifier=self.config.mqtt_client_id,
            tls_context=tls_context,
            logger=logging.getLogger("opcuagateway.mqtt.client"),
        )
        try:
            async with asyncio.timeout(self._timeout):
                await client.__aenter__()
        except _BROKER_ERRORS as exc:
            raise BrokerConnectError(f"cannot connect to MQTT broker {self.address}: {exc}") from exc

        self._client = client
        self.connected = True
        logger.info("MQTT client connected to %s.", self.address)

    async def publish(self, topic: str, payload: bytes) -> None:
        """Fire-and-forget publish (QoS 0, not retained)."""
        if self._client is None:
            raise BrokerPublishError(topic, "channel is not connected")
        try:
            async with self._guard():
                async with asyncio.timeout(self._timeout):
                    await self._client.publish(topic, payload, qos=PUBLISH_QOS, retain=PUBLISH_RETAIN)
        except _BROKER_ERRORS as exc:
            raise BrokerPublishError(topic, str(exc) or type(exc).__name__) from exc

    async def subscribe(self, topic: str) -> None:
        if self._client is None:
            raise BrokerSubscribeError(topic, "channel is not connected")
        try:
            async with self._guard():
                async with asyncio.timeout(self._timeout):
                    await self._client.subscribe(topic, qos=SUBSCRIBE_QOS)
        except _BROKER_ERRORS as exc:
            raise BrokerSubscribeError(topic, str(exc) or type(exc).__name__) from exc
        self.subscriptions.append(topic)

    async def messages(self) -> AsyncIterator[tuple[str, bytes]]:
        """Yield ``(topic, payload)`` for every message on any subscription."""
        if self._client is None:
            return
        async for message in self._client.messages:
            yield str(message.topic), _payload_bytes(message.payload)

    async def close(self) -> None:
        if self._client is None or not self.connected:
            return
        self.connected = False
        client, self._client = self._client, None
        await client.__aexit__(None, None, None)
        logger.info("MQTT client disconnected from %s.", self.address)


__all__ = ["BrokerChannel", "configure_tls_context"]
