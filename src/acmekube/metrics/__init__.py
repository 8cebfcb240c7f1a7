"""In-process metrics for the controller."""

from acmekube.metrics.collector import MetricsCollector

__all__ = ["MetricsCollector"]
