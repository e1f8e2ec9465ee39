# telemetry.py: OpenTelemetry instrumentation for the interview room API
"""
Configures distributed tracing for requests and database calls.
Exports to an OTLP collector when OTEL_EXPORTER_OTLP_ENDPOINT is set,
otherwise tracing stays off for development/testing.
"""
import os
import logging

logger = logging.getLogger("interview-rooms.telemetry")

# Service identity
SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "interview-rooms-api")
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")


def setup_telemetry(app=None, engine=None):
    """Initialise OpenTelemetry tracing and instrument FastAPI, plus the SQL
    record store engine when one is passed.

    No-op when no exporter endpoint is configured or the optional
    ``opentelemetry`` extra is not installed.
    """
    if not OTLP_ENDPOINT:
        logger.info("OpenTelemetry disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME as RES_SVC_NAME
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        resource = Resource.create({
            RES_SVC_NAME: SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "deployment.environment": ENVIRONMENT,
        })

        provider = TracerProvider(resource=resource)
        exporter = OTLPSpanExporter(endpoint=OTLP_ENDPOINT, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)

        if app is not None:
            try:
                from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
                FastAPIInstrumentor.instrument_app(
                    app,
                    excluded_urls="health",
                    tracer_provider=provider,
                )
                logger.info("FastAPI instrumented with OpenTelemetry")
            except ImportError:
                logger.warning("opentelemetry-instrumentation-fastapi not installed")

        if engine is not None:
            try:
                from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
                SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=provider)
                logger.info("Record store engine instrumented with OpenTelemetry")
            except ImportError:
                logger.warning("opentelemetry-instrumentation-sqlalchemy not installed")

        logger.info(f"OpenTelemetry initialised → {OTLP_ENDPOINT}")
        return provider

    except ImportError:
        logger.info("OpenTelemetry SDK not installed, tracing disabled")
        return None
    except Exception as e:
        logger.error(f"OpenTelemetry setup failed: {e}")
        return None
