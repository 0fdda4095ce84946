"""
Observability Module for the Invoice Ingestion Pipeline

Provides:
- Structured logging with correlation IDs
- Metrics collection (outcomes, extraction routes, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_outcome,
    record_extraction,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_outcome",
    "record_extraction",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
