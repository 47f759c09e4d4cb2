"""
Engine observability — OpenTelemetry tracing + Prometheus pipeline metrics.

Provides:
- Tracer provider setup (spans are emitted by the event bus and the
  orchestrator's pipeline stages)
- Notification outcome counters, parse latency, ledger commit counters
- Prometheus scraping utilities
"""

import time
import structlog
from contextlib import contextmanager
from typing import Generator

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

logger = structlog.get_logger(__name__)

# ── OpenTelemetry Setup ──────────────────────────────────────────────

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str | None = None,
    *,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service (appears in traces).
                      Defaults to the lower-cased APP_NAME.
        console_export: Print finished spans to stdout (local debugging).
    """
    global _tracer

    from autoledger.version import APP_NAME, VERSION

    if service_name is None:
        service_name = APP_NAME.lower()

    resource = Resource.create(
        {"service.name": service_name, "service.version": VERSION}
    )
    provider = TracerProvider(resource=resource)
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(__name__)
    logger.info("otel_tracing_initialized", service=service_name)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Return the configured tracer, or the global proxy tracer."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


@contextmanager
def trace_stage(stage_name: str, **attributes) -> Generator:
    """
    Context manager to trace one pipeline stage.

    Usage:
        with trace_stage("parse", source_app=app_id):
            result = parser.parse(...)
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(
        f"pipeline.{stage_name}",
        attributes={
            "pipeline.stage": stage_name,
            **{k: str(v) for k, v in attributes.items()},
        },
    ) as span:
        start = time.monotonic()
        try:
            yield span
            span.set_attribute("pipeline.status", "success")
        except Exception as e:
            span.set_attribute("pipeline.status", "error")
            span.set_attribute("pipeline.error", str(e))
            span.record_exception(e)
            raise
        finally:
            latency = (time.monotonic() - start) * 1000
            span.set_attribute("pipeline.latency_ms", round(latency))


# ── Pipeline Metrics ─────────────────────────────────────────────────

NOTIFICATIONS_PROCESSED = Counter(
    "notifications_total",
    "Notifications handled by the pipeline, by outcome",
    ["outcome"],  # queued | duplicate | ignored | error
    namespace="autoledger",
)

PARSE_LATENCY = Histogram(
    "parse_latency_seconds",
    "Notification parse latency",
    ["source_app"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1],
    namespace="autoledger",
)

LEDGER_COMMITS = Counter(
    "ledger_commits_total",
    "Transactions committed to the ledger",
    ["kind", "status"],
    namespace="autoledger",
)


# ── Prometheus Scraping ──────────────────────────────────────────────


def get_metrics() -> bytes:
    """Generate Prometheus metrics for scraping."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type for Prometheus metrics response."""
    return CONTENT_TYPE_LATEST
