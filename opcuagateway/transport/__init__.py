"""Transport adapters (OPC UA endpoint, MQTT broker) for the gateway."""

from .mqtt import BrokerChannel, configure_tls_context
from .opcua import EndpointConnection, EndpointSession

__all__ = [
    "BrokerChannel",
    "EndpointConnection",
    "EndpointSession",
    "configure_tls_context",
]
