"""
OpenTelemetry Metrics

Counters and histograms for publishing and delivery.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

# Global meter
_meter: Optional[metrics.Meter] = None

# Metric instruments
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}


def init_metrics(
    service_name: str = "newsdesk",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds

    Returns:
        Configured meter
    """
    global _meter

    readers = []

    if otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        readers.append(PeriodicExportingMetricReader(
            otlp_exporter,
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})

    provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter(service_name)
    _init_standard_metrics()

    logger.info(f"OTel metrics initialized: {service_name}")

    return _meter


def _init_standard_metrics():
    """Create the instruments recorded by the publisher and the workers."""
    meter = get_meter()

    _counters["newsletter_publish_total"] = meter.create_counter(
        "newsletter_publish_total",
        description="Publish requests by outcome (accepted, replayed, conflict)",
        unit="1"
    )

    _counters["newsletter_deliveries_enqueued_total"] = meter.create_counter(
        "newsletter_deliveries_enqueued_total",
        description="Delivery tasks written to the outbox",
        unit="1"
    )

    _counters["delivery_attempts_total"] = meter.create_counter(
        "delivery_attempts_total",
        description="Delivery attempts by outcome (delivered, failed, abandoned)",
        unit="1"
    )

    _counters["delivery_dead_letters_total"] = meter.create_counter(
        "delivery_dead_letters_total",
        description="Delivery tasks abandoned, by reason",
        unit="1"
    )

    _histograms["delivery_attempt_duration_seconds"] = meter.create_histogram(
        "delivery_attempt_duration_seconds",
        description="Duration of one delivery attempt including the email call",
        unit="s"
    )


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("newsdesk")
    return _meter


def record_counter(
    name: str,
    value: int = 1,
    attributes: Dict[str, Any] = None
):
    """Record a counter metric. Unknown names are ignored until init_metrics() runs."""
    if name in _counters:
        _counters[name].add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Dict[str, Any] = None
):
    """Record a histogram metric."""
    if name in _histograms:
        _histograms[name].record(value, attributes or {})
