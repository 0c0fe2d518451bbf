"""OpenTelemetry + Prometheus fallback wiring for gls."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from gls.config import Settings

logger = logging.getLogger("gls.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_page_counter: Any | None = None
_page_latency_hist: Any | None = None
_cycle_counter: Any | None = None
_cycle_duration_hist: Any | None = None
_pruned_counter: Any | None = None

_prom_enabled = False
_prom_page_counter: Any | None = None
_prom_page_latency_hist: Any | None = None
_prom_cycle_counter: Any | None = None
_prom_cycle_duration_hist: Any | None = None
_prom_pruned_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _label(value: str | None) -> str:
    return (value or "").strip() or "unknown"


def is_enabled() -> bool:
    return _enabled or _prom_enabled


def _init_prometheus(port: int) -> None:
    """Standalone Prometheus endpoint, served whether or not OTLP export is on."""
    global _prom_enabled
    global _prom_page_counter, _prom_page_latency_hist, _prom_cycle_counter
    global _prom_cycle_duration_hist, _prom_pruned_counter
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(port)
        _prom_page_counter = Counter(
            "gls_page_fetches_total",
            "Page fetch-and-store attempts by scope and result",
            ["scope", "result"],
        )
        _prom_page_latency_hist = Histogram(
            "gls_page_fetch_latency_ms",
            "Latency of one page fetch-and-store attempt",
            ["scope", "result"],
        )
        _prom_cycle_counter = Counter(
            "gls_refresh_cycles_total",
            "Full refresh cycles by result",
            ["result"],
        )
        _prom_cycle_duration_hist = Histogram(
            "gls_refresh_cycle_duration_ms",
            "Duration of full refresh cycles",
            ["result"],
        )
        _prom_pruned_counter = Counter(
            "gls_pruned_projects_total",
            "Projects removed from the cache as stale",
        )
        _prom_enabled = True
        logger.info("Prometheus fallback metrics server listening on port %s", port)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_enabled = False


def initialize(settings: Settings, app: Any | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _page_counter, _page_latency_hist, _cycle_counter, _cycle_duration_hist, _pruned_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True
    if settings.prom_port > 0:
        _init_prometheus(settings.prom_port)

    if not settings.otel_enabled:
        logger.debug("OpenTelemetry disabled (GLS_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(settings.otel_endpoint, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(settings.otel_endpoint, "/v1/metrics")
    service_name = settings.otel_service_name or "gls"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "gls",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_exporter = OTLPSpanExporter(endpoint=traces_endpoint or None)
    trace_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("gls")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("gls")

    _page_counter = meter.create_counter(
        "gls_page_fetches_total",
        unit="1",
        description="Page fetch-and-store attempts by scope and result",
    )
    _page_latency_hist = meter.create_histogram(
        "gls_page_fetch_latency_ms",
        unit="ms",
        description="Latency of one page fetch-and-store attempt",
    )
    _cycle_counter = meter.create_counter(
        "gls_refresh_cycles_total",
        unit="1",
        description="Full refresh cycles by result",
    )
    _cycle_duration_hist = meter.create_histogram(
        "gls_refresh_cycle_duration_ms",
        unit="ms",
        description="Duration of full refresh cycles",
    )
    _pruned_counter = meter.create_counter(
        "gls_pruned_projects_total",
        unit="1",
        description="Projects removed from the cache as stale",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _enabled = True

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

            _fastapi_instrumentor = FastAPIInstrumentor()
            _fastapi_instrumentor.instrument_app(app)
        except ImportError as exc:
            logger.warning("FastAPI instrumentation unavailable: %s", exc)

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        settings.otel_endpoint,
    )


def shutdown(app: Any | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception:
        logger.debug("FastAPI uninstrument failed", exc_info=True)
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception:
        logger.debug("Meter provider shutdown failed", exc_info=True)
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception:
        logger.debug("Trace provider shutdown failed", exc_info=True)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_page_fetch(scope: str, result: str, duration_ms: float) -> None:
    labels = {"scope": _label(scope), "result": _label(result)}
    if _enabled and _page_counter is not None:
        _page_counter.add(1, labels)
    if _enabled and _page_latency_hist is not None:
        _page_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_page_counter is not None:
        _prom_page_counter.labels(**labels).inc()
    if _prom_enabled and _prom_page_latency_hist is not None:
        _prom_page_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))


def record_refresh_cycle(result: str, duration_ms: float) -> None:
    labels = {"result": _label(result)}
    if _enabled and _cycle_counter is not None:
        _cycle_counter.add(1, labels)
    if _enabled and _cycle_duration_hist is not None:
        _cycle_duration_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_cycle_counter is not None:
        _prom_cycle_counter.labels(**labels).inc()
    if _prom_enabled and _prom_cycle_duration_hist is not None:
        _prom_cycle_duration_hist.labels(**labels).observe(max(0.0, float(duration_ms)))


def record_pruned(count: int) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    if _enabled and _pruned_counter is not None:
        _pruned_counter.add(safe_count)
    if _prom_enabled and _prom_pruned_counter is not None:
        _prom_pruned_counter.inc(safe_count)
