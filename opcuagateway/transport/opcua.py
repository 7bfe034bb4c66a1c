"""OPC UA endpoint transport for the gateway.

Splits the asyncua connect sequence in two so the lifecycle coordinator can
observe "endpoint connected" (socket, hello, secure channel) separately from
"session open" (create + activate session).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from asyncua import Client, ua
from asyncua.ua.uaerrors import UaError

from ..config.model import RuntimeConfig
from ..errors import (
    EndpointConnectError,
    EndpointReadError,
    EndpointWriteError,
    SessionOpenError,
)
from ..services.payloads import Number, coerce_for_datatype

logger = logging.getLogger("opcuagateway.opcua")

_ENDPOINT_ERRORS = (UaError, OSError, ValueError, TimeoutError, asyncio.TimeoutError)

ClientFactory = Callable[..., Any]


class EndpointSession:
    """Read/write access to endpoint variables through one activated session."""

    def __init__(
        self,
        client: Any,
        *,
        timeout: float,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._lock = lock
        self.closed = False

    def _guard(self) -> contextlib.AbstractAsyncContextManager[Any]:
        return self._lock if self._lock is not None else contextlib.nullcontext()

    async def read(self, node_id: str) -> Any:
        """Return the current value of *node_id*."""
        try:
            async with self._guard():
                async with asyncio.timeout(self._timeout):
                    node = self._client.get_node(node_id)
                    return await node.read_value()
        except _ENDPOINT_ERRORS as exc:
            raise EndpointReadError(node_id, _describe(exc)) from exc

    async def write(self, node_id: str, value: Number, datatype: str) -> None:
        """Write *value* to *node_id* encoded as OPC UA *datatype*."""
        try:
            variant_type = ua.VariantType[datatype]
            converted = coerce_for_datatype(value, datatype)
            async with self._guard():
                async with asyncio.timeout(self._timeout):
                    node = self._client.get_node(node_id)
                    await node.write_value(converted, variant_type)
        except KeyError as exc:
            raise EndpointWriteError(node_id, f"unknown datatype {datatype}") from exc
        except _ENDPOINT_ERRORS as exc:
            raise EndpointWriteError(node_id, _describe(exc)) from exc

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._client.close_session()
        logger.info("OPC UA session closed.")


class EndpointConnection:
    """Owns the asyncua client and its secure channel."""

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        client_factory: ClientFactory = Client,
        serialize_access: bool = False,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._client: Any = None
        self._lock = asyncio.Lock() if serialize_access else None
        self.connected = False

    @property
    def url(self) -> str:
        return self.config.opcua_url

    async def connect(self) -> None:
        """Open the socket and secure channel to the endpoint."""
        logger.info("Connecting to the OPC UA server at %s...", self.url)
        client = self._client_factory(url=self.url, timeout=self.config.operation_timeout)
        try:
            await client.load_client_certificate(self.config.opcua_certificate)
            await client.load_private_key(self.config.opcua_private_key)
            await client.connect_socket()
        except _ENDPOINT_ERRORS as exc:
            raise EndpointConnectError(f"cannot connect to {self.url}: {_describe(exc)}") from exc

        try:
            await client.send_hello()
            await client.open_secure_channel()
        except _ENDPOINT_ERRORS as exc:
            client.disconnect_socket()
            raise EndpointConnectError(f"cannot open secure channel to {self.url}: {_describe(exc)}") from exc

        self._client = client
        self.connected = True
        logger.info("Connected to OPC UA server %s.", self.url)

    async def open_session(self) -> EndpointSession:
        """Create and activate a session on the connected endpoint."""
        if self._client is None:
            raise SessionOpenError("endpoint is not connected")
        try:
            await self._client.create_session()
        except _ENDPOINT_ERRORS as exc:
            raise SessionOpenError(f"cannot create session on {self.url}: {_describe(exc)}") from exc
        try:
            await self._client.activate_session(
                username=self.config.opcua_username,
                password=self.config.opcua_password,
            )
        except _ENDPOINT_ERRORS as exc:
            with contextlib.suppress(*_ENDPOINT_ERRORS):
                await self._client.close_session()
            raise SessionOpenError(f"cannot activate session on {self.url}: {_describe(exc)}") from exc

        logger.info("OPC UA session created.")
        return EndpointSession(
            self._client,
            timeout=self.config.operation_timeout,
            lock=self._lock,
        )

    async def disconnect(self) -> None:
        if self._client is None or not self.connected:
            return
        self.connected = False
        try:
            await self._client.close_secure_channel()
        finally:
            self._client.disconnect_socket()
        logger.info("Disconnected from OPC UA server %s.", self.url)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return "operation timed out"
    return str(exc) or type(exc).__name__


__all__ = ["EndpointConnection", "EndpointSession"]
