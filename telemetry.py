import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator
from urllib.parse import urlparse

import uptrace
from opentelemetry import trace
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.requests import RequestsInstrumentor

SERVICE_NAME = "mod-update-checker"
SERVICE_VERSION = "0.5.0"

# uptrace raises these for a malformed DSN or an exporter that cannot start
TELEMETRY_ERRORS = (RuntimeError, ValueError, TypeError, AttributeError)

_state = {"initialized": False, "exporting": False}


@contextmanager
def start_span(name: str, attributes: Dict[str, Any] | None = None) -> Iterator[Any]:
    """Open a span for one phase of a run. ``None`` attribute values are dropped."""
    tracer = trace.get_tracer(SERVICE_NAME, SERVICE_VERSION)
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


class SpanEventSubscriber:
    """Copies updater events onto whichever span is active when they are emitted."""

    def __call__(self, name: str, payload: Dict[str, Any]) -> None:
        span = trace.get_current_span()
        if not span.is_recording():
            return
        span.add_event(name, span_event_attributes(payload))


def span_event_attributes(payload: Dict[str, Any]) -> Dict[str, Any]:
    attributes: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, (bool, int, float, str)):
            attributes[key] = value
        else:
            attributes[key] = str(value)
    return attributes


def init_telemetry() -> bool:
    """Start exporting to Uptrace when ``UPTRACE_DSN`` is set. Safe to call twice."""
    if _state["initialized"]:
        return _state["exporting"]
    _state["initialized"] = True

    dsn = os.environ.get("UPTRACE_DSN", "").strip()
    if not dsn:
        logging.info("UPTRACE_DSN is not set, traces are not exported")
        return False

    try:
        uptrace.configure_opentelemetry(
            dsn=dsn,
            service_name=os.environ.get("OTEL_SERVICE_NAME", SERVICE_NAME).strip(),
            service_version=SERVICE_VERSION,
            deployment_environment=os.environ.get("OTEL_DEPLOYMENT_ENVIRONMENT", "").strip(),
        )
    except TELEMETRY_ERRORS:
        logging.exception("Could not set up the Uptrace exporter")
        return False

    _instrument(RequestsInstrumentor(), "requests", _requests_hook)
    _instrument(AioHttpClientInstrumentor(), "aiohttp", _aiohttp_hook)
    _state["exporting"] = True
    logging.info("Exporting traces to Uptrace as %s", SERVICE_NAME)
    return True


def shutdown_telemetry() -> None:
    if not _state["exporting"]:
        return
    try:
        uptrace.shutdown()
    except TELEMETRY_ERRORS:
        logging.exception("Could not flush the Uptrace exporter")


def _instrument(instrumentor: Any, client: str, hook: Any) -> None:
    try:
        instrumentor.instrument(request_hook=hook)
    except TELEMETRY_ERRORS as exc:
        logging.warning("Cannot trace %s calls: %s", client, exc)


def _requests_hook(span: Any, request: Any) -> None:
    _name_client_span(span, getattr(request, "method", ""), getattr(request, "url", ""))


def _aiohttp_hook(span: Any, params: Any) -> None:
    _name_client_span(span, getattr(params, "method", ""), getattr(params, "url", ""))


def _name_client_span(span: Any, method: str, url: Any) -> None:
    if span is None or not span.is_recording():
        return
    parsed = urlparse(str(url or ""))
    route = normalize_route(parsed.path)
    span.update_name(f"{(method or 'GET').upper()} {parsed.netloc}{route}")
    span.set_attribute("http.route", route)


def normalize_route(path: str) -> str:
    """Collapse numeric segments so ``/mmdl/123`` and ``/mmdl/456`` share one route."""
    parts = ["{id}" if part.isdigit() else part for part in path.split("/") if part]
    return "/" + "/".join(parts)
