"""
Monitoring for Guardian Recovery.

This package provides:
- Metrics collection (counters, gauges, histograms)
- Structured logging with JSON output
- Flask request logging middleware

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("recovery_votes_cast")
    logger = get_logger(__name__)
    logger.info("Vote recorded", extra={"request_id": 1})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
]
