"""Data model for gateway configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..const import (
    DEFAULT_CLIENT_CERTIFICATE,
    DEFAULT_CLIENT_PRIVATE_KEY,
    DEFAULT_DATATYPE,
    DEFAULT_EXPORTER_HOST,
    DEFAULT_EXPORTER_PORT,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_OPERATION_TIMEOUT,
    MODE_PUB,
    MODE_PUBSUB,
    MODE_SUB,
)


@dataclass(frozen=True, slots=True)
class MetricDescriptor:
    """One bridged point: an endpoint node bound to a broker topic."""

    node_id: str
    topic: str
    mode: str
    interval: float | None = None
    datatype: str = DEFAULT_DATATYPE

    @property
    def publishes(self) -> bool:
        return self.mode in (MODE_PUB, MODE_PUBSUB)

    @property
    def subscribes(self) -> bool:
        return self.mode in (MODE_SUB, MODE_PUBSUB)

    @property
    def interval_seconds(self) -> float:
        """Polling period in seconds (``interval`` is configured in ms)."""
        if self.interval is None:
            raise ValueError(f"metric {self.node_id} has no polling interval")
        return self.interval / 1000.0

    @property
    def key(self) -> str:
        return f"{self.mode}:{self.node_id}->{self.topic}"


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the gateway."""

    opcua_url: str
    metrics: tuple[MetricDescriptor, ...] = ()
    opcua_certificate: str = DEFAULT_CLIENT_CERTIFICATE
    opcua_private_key: str = DEFAULT_CLIENT_PRIVATE_KEY
    opcua_username: str | None = None
    opcua_password: str | None = field(repr=False, default=None)
    operation_timeout: float = DEFAULT_OPERATION_TIMEOUT

    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = field(repr=False, default=None)
    mqtt_client_id: str | None = None
    mqtt_tls: bool = False
    mqtt_cafile: str | None = None
    mqtt_certfile: str | None = None
    mqtt_keyfile: str | None = None
    mqtt_tls_insecure: bool = False

    debug_logging: bool = False
    exporter_enabled: bool = False
    exporter_host: str = DEFAULT_EXPORTER_HOST
    exporter_port: int = DEFAULT_EXPORTER_PORT
    source_path: str | None = None

    @property
    def tls_enabled(self) -> bool:
        return self.mqtt_tls

    @property
    def published_metrics(self) -> tuple[MetricDescriptor, ...]:
        return tuple(metric for metric in self.metrics if metric.publishes)

    @property
    def subscribed_metrics(self) -> tuple[MetricDescriptor, ...]:
        return tuple(metric for metric in self.metrics if metric.subscribes)
