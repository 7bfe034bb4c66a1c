"""Settings loader for the OPC UA <-> MQTT gateway.

Configuration is read from a TOML file whose path comes from the command
line, the ``OPCUAGW_CONFIG`` environment variable, or ``config.toml`` in the
working directory, in that order. The only environment overrides are the
MQTT credentials, so secrets can stay out of the file.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import msgspec
from marshmallow import ValidationError

from ..const import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    MQTT_PASSWORD_ENV,
    MQTT_USERNAME_ENV,
)
from ..errors import ConfigError
from .model import MetricDescriptor, RuntimeConfig
from .schema import GatewayConfigSchema

logger = logging.getLogger(__name__)

__all__ = [
    "MetricDescriptor",
    "RuntimeConfig",
    "load_runtime_config",
    "log_config_summary",
    "lookup_credential",
    "resolve_config_path",
]


def resolve_config_path(
    path: str | os.PathLike[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Path:
    env = os.environ if environ is None else environ
    if path:
        return Path(path)
    env_path = (env.get(CONFIG_PATH_ENV) or "").strip()
    if env_path:
        return Path(env_path)
    return Path(DEFAULT_CONFIG_PATH)


def lookup_credential(
    keys: Iterable[str],
    *,
    environ: Mapping[str, str],
    fallback: str | None = None,
) -> str | None:
    """Resolve a credential from the environment, falling back to the file."""

    for key in keys:
        if key in environ:
            return (environ.get(key) or "").strip() or None
    return fallback


def _read_raw_config(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        raw = msgspec.toml.decode(path.read_bytes())
    except (msgspec.DecodeError, ValueError) as exc:
        raise ConfigError(f"Error parsing configuration file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration file {path} must contain a TOML table")
    return raw


def _format_errors(messages: Any, prefix: str = "") -> list[str]:
    if isinstance(messages, dict):
        lines: list[str] = []
        for key, value in messages.items():
            label = f"{prefix}[{key}]" if isinstance(key, int) else (f"{prefix}.{key}" if prefix else str(key))
            lines.extend(_format_errors(value, label))
        return lines
    if isinstance(messages, (list, tuple)):
        return [f"{prefix}: {message}" for message in messages]
    return [f"{prefix}: {messages}"]


def _resolve_material(value: str, base_dir: Path) -> str:
    candidate = Path(os.path.expanduser(value))
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return str(candidate.resolve())


def _apply_credentials(config: RuntimeConfig, base_dir: Path, environ: Mapping[str, str]) -> None:
    config.opcua_certificate = _resolve_material(config.opcua_certificate, base_dir)
    config.opcua_private_key = _resolve_material(config.opcua_private_key, base_dir)

    if not Path(config.opcua_certificate).is_file():
        raise ConfigError(f"Client certificate not found: {config.opcua_certificate}")
    if not Path(config.opcua_private_key).is_file():
        raise ConfigError(f"Client private key not found: {config.opcua_private_key}")

    for attr in ("mqtt_cafile", "mqtt_certfile", "mqtt_keyfile"):
        value = getattr(config, attr)
        if value:
            setattr(config, attr, _resolve_material(value, base_dir))

    config.mqtt_user = lookup_credential((MQTT_USERNAME_ENV,), environ=environ, fallback=config.mqtt_user)
    config.mqtt_pass = lookup_credential((MQTT_PASSWORD_ENV,), environ=environ, fallback=config.mqtt_pass)


def load_runtime_config(
    path: str | os.PathLike[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """Load, validate and normalise the gateway configuration.

    Raises:
        ConfigError: the file is missing or malformed, a metric descriptor
            is invalid, or the OPC UA client certificate/key is missing.
    """

    env = os.environ if environ is None else environ
    config_path = resolve_config_path(path, environ=env)
    raw = _read_raw_config(config_path)

    try:
        config: RuntimeConfig = GatewayConfigSchema().load(raw)
    except ValidationError as exc:
        details = "; ".join(_format_errors(exc.messages))
        raise ConfigError(f"Invalid configuration in {config_path}: {details}") from exc

    _apply_credentials(config, config_path.resolve().parent, env)
    config.source_path = str(config_path)
    return config


def log_config_summary(config: RuntimeConfig) -> None:
    """Log where the configuration came from and any risky settings.

    Called once logging is configured so these records reach the structured
    handler.
    """
    if not config.metrics:
        logger.warning("No metrics configured; the gateway will only hold its connections open.")
    if not config.mqtt_tls:
        logger.warning("MQTT TLS is disabled; MQTT credentials and payloads will be sent in plaintext.")
    elif config.mqtt_tls_insecure:
        logger.warning(
            "MQTT TLS hostname verification is disabled (tls_insecure=true); "
            "use only for known/self-hosted brokers."
        )

    logger.info(
        "Configuration loaded from %s (%d metrics)",
        config.source_path or "<defaults>",
        len(config.metrics),
    )
