"""Exception hierarchy for the OPC UA <-> MQTT gateway.

Startup errors are turned into :class:`GatewayFatal` by the lifecycle
coordinator; per-operation errors are logged where they occur and never
leave the task that raised them.
"""

from __future__ import annotations

__all__ = [
    "BrokerConnectError",
    "BrokerError",
    "BrokerPublishError",
    "BrokerSubscribeError",
    "ConfigError",
    "EndpointConnectError",
    "EndpointError",
    "EndpointReadError",
    "EndpointWriteError",
    "GatewayError",
    "GatewayFatal",
    "PayloadValidationError",
    "SessionOpenError",
]


class GatewayError(Exception):
    """Base class for every error raised by the gateway."""


class ConfigError(GatewayError):
    """Configuration file missing, unparseable or invalid."""


class EndpointError(GatewayError):
    """Failure talking to the OPC UA endpoint."""


class EndpointConnectError(EndpointError):
    pass


class SessionOpenError(EndpointError):
    pass


class EndpointReadError(EndpointError):
    def __init__(self, node_id: str, reason: str) -> None:
        super().__init__(f"read of {node_id} failed: {reason}")
        self.node_id = node_id


class EndpointWriteError(EndpointError):
    def __init__(self, node_id: str, reason: str) -> None:
        super().__init__(f"write to {node_id} failed: {reason}")
        self.node_id = node_id


class BrokerError(GatewayError):
    """Failure talking to the MQTT broker."""


class BrokerConnectError(BrokerError):
    pass


class BrokerPublishError(BrokerError):
    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(f"publish to {topic} failed: {reason}")
        self.topic = topic


class BrokerSubscribeError(BrokerError):
    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(f"subscribe to {topic} failed: {reason}")
        self.topic = topic


class PayloadValidationError(ValueError):
    """Raised when an inbound MQTT payload cannot be validated."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class GatewayFatal(GatewayError):
    """Startup failure after which the gateway cannot bridge anything.

    Carries the lifecycle state the failure happened in so callers (the
    process entry point, tests) can report it without inspecting logs.
    """

    def __init__(self, message: str, *, state: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.state = state
        self.cause = cause
