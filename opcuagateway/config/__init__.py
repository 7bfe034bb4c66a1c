"""Configuration helpers for the OPC UA <-> MQTT gateway."""

from .model import MetricDescriptor, RuntimeConfig
from .settings import load_runtime_config

__all__ = ["MetricDescriptor", "RuntimeConfig", "load_runtime_config"]
