"""
StakeGuard Metrics Module

Prometheus-compatible metrics for monitoring.
"""

from .collector import (
    MetricsCollector,
    Counter,
    Gauge,
    MetricsRegistry,
)

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "MetricsRegistry",
]
