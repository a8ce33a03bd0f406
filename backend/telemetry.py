# telemetry.py — Optional OpenTelemetry tracing for CertiSphere
"""
Exports spans to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set.
Without an endpoint (development, tests) nothing is installed.
"""
import os
import logging

logger = logging.getLogger("certisphere.telemetry")

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "certisphere-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def _instrument_libraries(app, provider) -> list:
    """Instrument the inbound API, the persistence gateway and outbound HTTP (payment provider)."""
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from database import engine

    instrumented = []
    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,ws/stats", tracer_provider=provider)
        instrumented.append("fastapi")
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
    instrumented.append("sqlalchemy")
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    instrumented.append("httpx")
    return instrumented


def setup_telemetry(app=None):
    """Install a tracer provider and instrument the service; returns the provider or None."""
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    resource = Resource.create({
        RES_SVC_NAME: SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "deployment.environment": ENVIRONMENT,
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)))
    trace.set_tracer_provider(provider)

    try:
        instrumented = _instrument_libraries(app, provider)
    except Exception as e:
        logger.error(f"OpenTelemetry instrumentation failed: {e}")
        return provider

    logger.info(f"OpenTelemetry exporting to {OTLP_ENDPOINT} ({', '.join(instrumented)})")
    return provider
