#!/usr/bin/env python3
"""
Telemetry setup using OpenTelemetry.

This module configures tracing for aiohttp client requests and the key
pipeline spans (poll run, webhook handling, batch processing). Spans are
exported to Azure Monitor when an Application Insights connection string is
provided; otherwise they stay in-process.

Environment variables:
  - APPLICATIONINSIGHTS_CONNECTION_STRING or AZURE_MONITOR_CONNECTION_STRING
  - OTEL_SERVICE_NAME (default: miniflux-summarizer)
  - OTEL_ENVIRONMENT (maps to deployment.environment)
  - DISABLE_TELEMETRY=true to fully disable

The module is safe to import multiple times; initialization is idempotent.
"""

from __future__ import annotations

import os
import atexit
import logging
import threading
from typing import Any, Callable, Dict, Optional
import functools

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

_init_lock = threading.Lock()
_initialized = False
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger(__name__)


def _connection_string() -> Optional[str]:
    return os.environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING") or os.environ.get(
        "AZURE_MONITOR_CONNECTION_STRING"
    )


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Initialize OpenTelemetry tracing and instrumentation.

    Safe to call multiple times. If DISABLE_TELEMETRY=true, it's a no-op.
    """
    global _initialized, _provider
    if os.environ.get("DISABLE_TELEMETRY", "false").lower() == "true":
        return
    if _initialized:
        return
    with _init_lock:
        if _initialized:
            return

        svc = service_name or os.environ.get("OTEL_SERVICE_NAME", "miniflux-summarizer")
        env = os.environ.get("OTEL_ENVIRONMENT")
        attrs = {"service.name": svc}
        if env:
            attrs["deployment.environment"] = env
        resource = Resource.create(attrs)

        # Reuse a provider set by external auto-instrumentation
        existing = trace.get_tracer_provider()
        if isinstance(existing, TracerProvider):
            provider = existing
        else:
            provider = TracerProvider(resource=resource)

        conn = _connection_string()
        if conn:
            try:
                from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter

                provider.add_span_processor(BatchSpanProcessor(AzureMonitorTraceExporter.from_connection_string(conn)))
                _logger.info("Telemetry initialized: Azure Monitor trace exporter enabled (service=%s)", svc)
            except Exception as e:
                _logger.warning("Telemetry init: failed to enable Azure exporter; spans will not be exported: %s", e)
        else:
            _logger.info("Telemetry initialized without exporter (service=%s); no spans will be exported", svc)

        if not isinstance(existing, TracerProvider):
            trace.set_tracer_provider(provider)
        _provider = provider

        AioHttpClientInstrumentor().instrument()
        # Inject trace/span ids into log records as otelTraceID / otelSpanID without changing format
        LoggingInstrumentor().instrument()

        _initialized = True

        def _shutdown():
            # TracerProvider.shutdown() flushes BatchSpanProcessor
            if _provider:
                _provider.shutdown()

        atexit.register(_shutdown)


def get_tracer(name: str = "miniflux-summarizer"):
    """Get the OpenTelemetry tracer for a named subsystem."""
    return trace.get_tracer(name)


def _apply(span, name: str, attrs_fn, *args, **kwargs) -> None:
    if not callable(attrs_fn):
        return
    try:
        for key, value in (attrs_fn(*args, **kwargs) or {}).items():
            span.set_attribute(key, value)
    except Exception as e:
        # Attribute extraction must not fail the traced call
        _logger.debug("Failed to set span attributes for %s: %s", name, e)


def trace_span(
    span_name: str | None = None,
    *,
    tracer_name: str | None = None,
    attr_from_args: Optional[Callable[..., Dict[str, Any]]] = None,
    attr_from_result: Optional[Callable[[Any], Dict[str, Any]]] = None,
):
    """Wrap a coroutine function in an OpenTelemetry span.

    Args:
        span_name: Name of the span (defaults to module.funcname)
        tracer_name: Tracer name (defaults to the first dotted part of span_name)
        attr_from_args: Called with the call's arguments; returns span attributes
        attr_from_result: Called with the return value; returns span attributes

    Exceptions are recorded on the span and re-raised.
    """

    def _decorator(func):
        name = span_name or f"{func.__module__}.{func.__name__}"
        tracer = get_tracer(tracer_name or name.split(".")[0] or "miniflux-summarizer")

        @functools.wraps(func)
        async def _traced(*args, **kwargs):
            with tracer.start_as_current_span(name) as span:
                _apply(span, name, attr_from_args, *args, **kwargs)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR))
                    raise
                _apply(span, name, attr_from_result, result)
                return result

        return _traced

    return _decorator


def report_attributes(report: Any) -> Dict[str, Any]:
    """Span attributes summarizing a BatchReport: one `entries.<outcome>` count per outcome."""
    attrs = {f"entries.{outcome}": count for outcome, count in report.counts().items()}
    attrs["entries.peak_concurrency"] = report.peak_concurrency
    return attrs
