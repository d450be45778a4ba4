"""
OpenTelemetry Tracing Setup
===========================
Configures distributed tracing for orchestrator runs.

When ENABLE_TRACING=true, spans for each run and each unit are exported to
the OTLP HTTP endpoint. Otherwise the global no-op tracer is used and every
helper here is free to call.
"""

import atexit
import json
from typing import Any, Mapping, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from loguru import logger

from omniforge.config import TRACING

SERVICE_NAME_VALUE = TRACING.SERVICE_NAME
OTLP_ENDPOINT = TRACING.OTLP_ENDPOINT
ENABLE_TRACING = TRACING.ENABLED

# Track provider for cleanup
_provider: Optional[TracerProvider] = None


def _cleanup_tracing() -> None:
    """Shutdown the tracer provider to flush pending spans."""
    global _provider
    if _provider is not None:
        try:
            _provider.shutdown()
        except Exception as e:
            logger.debug(f"Tracer shutdown failed: {e}")


def setup_tracing(service_name: str = SERVICE_NAME_VALUE, endpoint: str = OTLP_ENDPOINT) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing with OTLP export.

    Args:
        service_name: Name of the service for trace identification
        endpoint: OTLP HTTP traces endpoint

    Returns:
        Configured tracer instance
    """
    global _provider

    resource = Resource.create({
        SERVICE_NAME: service_name,
    })

    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(_provider)

    atexit.register(_cleanup_tracing)
    logger.debug(f"Tracing enabled, exporting to {endpoint}")

    return trace.get_tracer(service_name)


def get_tracer(name: str = SERVICE_NAME_VALUE) -> trace.Tracer:
    """Get a tracer instance for creating spans."""
    return trace.get_tracer(name)


_MAX_TEXT = 2048
_MAX_ITEM = 256
_MAX_ITEMS = 25


def _attribute_value(value: Any) -> Any:
    """Coerce a value into something an OTel attribute accepts, or None to skip it."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value[:_MAX_TEXT]
    if isinstance(value, dict):
        try:
            return json.dumps(value, sort_keys=True)[:_MAX_TEXT]
        except (TypeError, ValueError):
            return str(value)[:_MAX_TEXT]
    if isinstance(value, (set, frozenset)):
        value = sorted(value, key=str)
    if isinstance(value, (list, tuple)):
        return [str(item)[:_MAX_ITEM] for item in list(value)[:_MAX_ITEMS]]
    return str(value)[:_MAX_TEXT]


def safe_set_span_attributes(span: Any, attributes: Mapping[str, Any]) -> None:
    """Set attributes on span, dropping anything that cannot be recorded.

    A None span, a no-op span or a failing setter are all ignored so tracing
    never breaks a run.
    """
    set_attribute = getattr(span, "set_attribute", None)
    if not callable(set_attribute):
        return

    for key, raw in attributes.items():
        if not key or not isinstance(key, str):
            continue
        value = _attribute_value(raw)
        if value is None:
            continue
        try:
            set_attribute(key, value)
        except Exception as e:
            logger.debug(f"Dropped span attribute {key}: {e}")


_tracer = None


def init_tracing() -> trace.Tracer:
    """
    Initialize tracing if not already done.

    Returns:
        The global tracer instance (or NoOp tracer if disabled)
    """
    global _tracer
    if _tracer is None:
        if ENABLE_TRACING:
            _tracer = setup_tracing()
        else:
            _tracer = trace.get_tracer(SERVICE_NAME_VALUE)
    return _tracer
