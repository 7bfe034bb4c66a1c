"""Defaults and fixed protocol constants for the gateway."""

from __future__ import annotations

import ssl
from typing import Final

DEFAULT_CONFIG_PATH: Final[str] = "config.toml"
CONFIG_PATH_ENV: Final[str] = "OPCUAGW_CONFIG"
MQTT_USERNAME_ENV: Final[str] = "OPCUAGW_MQTT_USERNAME"
MQTT_PASSWORD_ENV: Final[str] = "OPCUAGW_MQTT_PASSWORD"
LOG_STREAM_ENV: Final[str] = "OPCUAGW_LOG_STREAM"

DEFAULT_CLIENT_CERTIFICATE: Final[str] = "certs/own/certs/client_selfsigned_cert.pem"
DEFAULT_CLIENT_PRIVATE_KEY: Final[str] = "certs/own/private/private_key.pem"
DEFAULT_OPERATION_TIMEOUT: Final[float] = 10.0

DEFAULT_MQTT_HOST: Final[str] = "localhost"
DEFAULT_MQTT_PORT: Final[int] = 1883
MQTT_TLS_MIN_VERSION: Final[ssl.TLSVersion] = ssl.TLSVersion.TLSv1_2

# Outbound values are fire-and-forget: QoS 0, never retained.
PUBLISH_QOS: Final[int] = 0
PUBLISH_RETAIN: Final[bool] = False
SUBSCRIBE_QOS: Final[int] = 0

DEFAULT_DATATYPE: Final[str] = "Double"
NUMERIC_DATATYPES: Final[frozenset[str]] = frozenset(
    {
        "Double",
        "Float",
        "Int16",
        "Int32",
        "Int64",
        "UInt16",
        "UInt32",
        "UInt64",
        "Byte",
        "SByte",
    }
)
INTEGER_DATATYPES: Final[frozenset[str]] = NUMERIC_DATATYPES - {"Double", "Float"}

MODE_PUB: Final[str] = "pub"
MODE_SUB: Final[str] = "sub"
MODE_PUBSUB: Final[str] = "pubsub"
METRIC_MODES: Final[tuple[str, ...]] = (MODE_PUB, MODE_SUB, MODE_PUBSUB)

DEFAULT_EXPORTER_HOST: Final[str] = "127.0.0.1"
DEFAULT_EXPORTER_PORT: Final[int] = 9131

SHUTDOWN_GRACE_SECONDS: Final[float] = 5.0
