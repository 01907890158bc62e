"""
Logging and OpenTelemetry tracing setup.

Every request carries a correlation ID (X-Correlation-ID, generated when the
caller sends none). It is kept in a context variable for the duration of the
request so that every log record written while serving it carries the ID,
and it is set on the active span.
"""

import contextvars
import logging
import uuid
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="N/A")


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s'
)


class CorrelationIdFilter(logging.Filter):
    """Stamp log records with the current request's correlation ID."""

    def filter(self, record):
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = correlation_id_var.get()
        return True


# Handler-level so records from every logger pass through it
for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationIdFilter())


def setup_observability(service_name: str, otlp_endpoint: Optional[str] = None):
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Reported as service.name on every span
        otlp_endpoint: OTLP gRPC collector; without one spans are recorded but not exported
    """
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name})
    )

    if otlp_endpoint:
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        )
        logging.info(f"✅ OpenTelemetry tracing exporting to {otlp_endpoint}")
    else:
        logging.info("OpenTelemetry tracing enabled without exporter (OTLP_ENDPOINT not set)")

    trace.set_tracer_provider(tracer_provider)


def instrument_fastapi(app: FastAPI):
    """Instrument the FastAPI app (one server span per request)."""
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    logging.info("✅ FastAPI instrumented with OpenTelemetry")


async def correlation_id_middleware(request: Request, call_next: Callable) -> Response:
    """
    Bind a correlation ID to the request.

    Read from the X-Correlation-ID header or generated, echoed back on the
    response and attached to failures in the log and on the span.
    """
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    token = correlation_id_var.set(correlation_id)

    current_span = trace.get_current_span()
    current_span.set_attribute("correlation_id", correlation_id)

    try:
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
    except Exception as e:
        logging.error(f"Request {request.method} {request.url.path} failed: {e}", exc_info=True)
        current_span.set_status(Status(StatusCode.ERROR))
        current_span.record_exception(e)
        raise
    finally:
        correlation_id_var.reset(token)


def get_tracer(name: str) -> trace.Tracer:
    """
    Get OpenTelemetry tracer for service component.

    Usage:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("aggregate_range") as span:
            span.set_attribute("day_count", len(days))
    """
    return trace.get_tracer(name)
