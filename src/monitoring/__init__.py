"""
Monitoring and metrics infrastructure for Date Consensus.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output and redaction
- Request timing middleware

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("submissions_total")
    metrics.timing("aggregate_recompute_ms", 4.2)

    logger = get_logger(__name__)
    logger.info("Prediction submitted", extra={"days_difference": 12})
"""

from monitoring.logging import configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging

__all__ = [
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
]
