"""Runtime state for the gateway."""

from .stats import GatewayStats, MetricCounters

__all__ = ["GatewayStats", "MetricCounters"]
