"""OpenTelemetry + Prometheus fallback wiring for session distillation."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from session_distill import config

logger = logging.getLogger("session_distill.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_distill_counter: Any | None = None
_distill_latency_hist: Any | None = None
_parser_failure_counter: Any | None = None
_tokens_counter: Any | None = None
_cost_counter: Any | None = None

_prom_enabled = False
_prom_distill_counter: Any | None = None
_prom_distill_latency_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_tokens_counter: Any | None = None
_prom_cost_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _label(value: str | None, default: str = "unknown") -> str:
    return (value or "").strip() or default


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_distill_counter, _prom_distill_latency_hist, _prom_parser_failure_counter
    global _prom_tokens_counter, _prom_cost_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server
    except ImportError as exc:
        logger.warning("Prometheus fallback unavailable: %s", exc)
        return

    try:
        start_http_server(config.PROM_PORT)
    except OSError as exc:
        logger.warning("Prometheus fallback not started: %s", exc)
        return

    _prom_distill_counter = Counter(
        "session_distill_runs_total",
        "Count of session distillation runs",
        ["result", "project"],
    )
    _prom_distill_latency_hist = Histogram(
        "session_distill_latency_ms",
        "Latency of session distillation runs",
        ["result", "project"],
    )
    _prom_parser_failure_counter = Counter(
        "session_distill_parser_failures_total",
        "Count of whole-file parser failures",
        ["parser", "project"],
    )
    _prom_tokens_counter = Counter(
        "session_distill_tokens_total",
        "Token totals by model",
        ["model", "direction"],
    )
    _prom_cost_counter = Counter(
        "session_distill_cost_usd_total",
        "Estimated cost totals by model",
        ["model"],
    )
    _prom_enabled = True
    logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _distill_counter, _distill_latency_hist, _parser_failure_counter, _tokens_counter, _cost_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (SESSION_DISTILL_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "session-distill"

    resource = Resource.create({"service.name": service_name, "service.namespace": "session-distill"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("session_distill")

    _distill_counter = meter.create_counter(
        "session_distill_runs_total",
        unit="1",
        description="Count of session distillation runs",
    )
    _distill_latency_hist = meter.create_histogram(
        "session_distill_latency_ms",
        unit="ms",
        description="Latency of session distillation runs",
    )
    _parser_failure_counter = meter.create_counter(
        "session_distill_parser_failures_total",
        unit="1",
        description="Count of whole-file parser failures",
    )
    _tokens_counter = meter.create_counter(
        "session_distill_tokens_total",
        unit="1",
        description="Token totals by model",
    )
    _cost_counter = meter.create_counter(
        "session_distill_cost_usd_total",
        unit="usd",
        description="Estimated cost totals by model",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("session_distill")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    if app and _fastapi_instrumentor:
        _fastapi_instrumentor.uninstrument_app(app)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
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


def record_distill(result: str, duration_ms: float, *, project_id: str) -> None:
    labels = {"result": _label(result), "project_id": _label(project_id)}
    latency = max(0.0, float(duration_ms))
    if _enabled and _distill_counter is not None:
        _distill_counter.add(1, labels)
    if _enabled and _distill_latency_hist is not None:
        _distill_latency_hist.record(latency, labels)
    if _prom_enabled and _prom_distill_counter is not None:
        _prom_distill_counter.labels(result=_label(result), project=_label(project_id)).inc()
    if _prom_enabled and _prom_distill_latency_hist is not None:
        _prom_distill_latency_hist.labels(result=_label(result), project=_label(project_id)).observe(latency)


def record_parser_failure(parser: str, *, project_id: str) -> None:
    labels = {"parser": _label(parser), "project_id": _label(project_id)}
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(parser=_label(parser), project=_label(project_id)).inc()


def record_token_cost(*, model: str, token_input: int, token_output: int, cost_usd: float) -> None:
    model_label = _label(model)
    in_tokens = max(0, int(token_input))
    out_tokens = max(0, int(token_output))
    if _enabled and _tokens_counter is not None:
        if in_tokens > 0:
            _tokens_counter.add(in_tokens, {"model": model_label, "direction": "input"})
        if out_tokens > 0:
            _tokens_counter.add(out_tokens, {"model": model_label, "direction": "output"})
    if _enabled and _cost_counter is not None and cost_usd > 0:
        _cost_counter.add(float(cost_usd), {"model": model_label})
    if _prom_enabled and _prom_tokens_counter is not None:
        if in_tokens > 0:
            _prom_tokens_counter.labels(model=model_label, direction="input").inc(in_tokens)
        if out_tokens > 0:
            _prom_tokens_counter.labels(model=model_label, direction="output").inc(out_tokens)
    if _prom_enabled and _prom_cost_counter is not None and cost_usd > 0:
        _prom_cost_counter.labels(model=model_label).inc(float(cost_usd))
