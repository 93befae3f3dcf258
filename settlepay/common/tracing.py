"""OpenTelemetry wiring for the settlement API."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from settlepay.common.config import CommonSettings

# Probe and scrape endpoints would otherwise dominate the trace volume.
UNTRACED_ROUTES = "health,metrics"


def enable_tracing(app: FastAPI, config: CommonSettings) -> bool:
    """Export request spans over OTLP HTTP; returns whether tracing is on."""

    if not config.otel_enabled:
        return False
    provider = TracerProvider(resource=Resource.create({"service.name": config.service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_ROUTES)
    return True
