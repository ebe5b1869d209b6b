"""Tracing and Prometheus export for archive and recovery traffic."""

import os
import sys

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import start_http_server

from .config import settings
from .infrastructure.database.database import get_main_engine
from .logging_config import get_logger

logger = get_logger(__name__)


def _running_under_tests() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("TESTING"))


def setup_telemetry(app: FastAPI) -> bool:
    """Instrument the app and the engine when ``settings.enable_telemetry`` is on.

    Returns:
        Whether instrumentation was installed
    """
    if not settings.enable_telemetry:
        return False
    if _running_under_tests():
        logger.info("Skipping OpenTelemetry setup during tests")
        return False

    resource = Resource.create(
        {SERVICE_NAME: settings.app_name.lower(), SERVICE_VERSION: settings.version}
    )
    try:
        start_http_server(settings.metrics_port)
    except OSError as e:
        # The service still answers requests, only the scrape endpoint is missing
        logger.error(
            "Prometheus endpoint unavailable", port=settings.metrics_port, error=str(e)
        )
        return False

    metrics.set_meter_provider(
        MeterProvider(resource=resource, metric_readers=[PrometheusMetricReader()])
    )
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tracer_provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    SQLAlchemyInstrumentor().instrument(engine=get_main_engine())
    logger.info(
        "OpenTelemetry enabled",
        metrics_port=settings.metrics_port,
        service=settings.app_name,
    )
    return True
