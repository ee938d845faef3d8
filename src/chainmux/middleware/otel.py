"""OpenTelemetry tracing and metrics middleware.

Creates HTTP server spans and metrics with semantic conventions for each request.

Install with: uv add "chainmux[otel]"
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chainmux.http import Request, Response
    from chainmux.types import Handler, Proceed

try:
    from opentelemetry import context, metrics, trace
    from opentelemetry.propagate import extract
    from opentelemetry.trace import (
        SpanKind,
        Status,
        StatusCode,
        TracerProvider,
    )
except ImportError as e:
    msg = (
        "OpenTelemetry middleware requires the 'otel' extra. "
        "Install with: uv add 'chainmux[otel]'"
    )
    raise ImportError(msg) from e


_DURATION_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.075,
    0.1,
    0.25,
    0.5,
    0.75,
    1.0,
    2.5,
    5.0,
    7.5,
    10.0,
)


def otel(
    *,
    tracer_provider: TracerProvider | None = None,
    meter_provider: metrics.MeterProvider | None = None,
) -> Handler:
    """Create OpenTelemetry tracing and metrics middleware.

    Opens a server span when the request reaches the middleware and closes it
    when the response is sent, so every handler after it in the chain (and the
    final handler) is covered. Register it first so it sees the whole chain:

        router.use(otel())

    The matched route is resolved before the chain starts, so the span is named
    ``"METHOD /route"`` even when the middleware is global. Unmatched requests
    are named ``"METHOD status"`` once the status is known.

    The span is the current span while the rest of the chain runs, so spans
    opened by handlers (sync or async) become its children. An error handed to
    the final handler is recorded on the span as an exception event.

    Extracts trace context from incoming request headers (e.g. ``traceparent``)
    for distributed tracing. Only depends on ``opentelemetry-api``; users bring
    their own SDK and exporters.

    Metrics emitted:
        - ``http.server.request.duration`` (histogram, seconds)
        - ``http.server.active_requests`` (up-down counter)

    Args:
        tracer_provider: Optional TracerProvider. If None, uses the global provider.
        meter_provider: Optional MeterProvider. If None, uses the global provider.
    """
    tracer = trace.get_tracer(
        "chainmux",
        tracer_provider=tracer_provider,
    )
    meter = metrics.get_meter(
        "chainmux",
        meter_provider=meter_provider,
    )
    duration_histogram = meter.create_histogram(
        "http.server.request.duration",
        unit="s",
        description="Duration of HTTP server requests.",
        explicit_bucket_boundaries_advisory=_DURATION_BUCKETS,
    )
    active_requests_counter = meter.create_up_down_counter(
        "http.server.active_requests",
        unit="{request}",
        description="Number of active HTTP server requests.",
    )

    def traced(request: Request, response: Response, proceed: Proceed) -> None:
        ctx = extract(request.headers)
        route = request.route or ""
        method = request.method
        span_name = f"{method} {route}" if route else method
        scope = request.scope
        scheme = scope.scheme if scope is not None else "http"

        # Span attributes (stable HTTP semantic conventions)
        attributes: dict[str, str | int] = {
            "http.request.method": method,
            "url.path": request.path or request.url,
            "url.scheme": scheme,
        }
        if scope is not None:
            attributes["network.protocol.version"] = scope.http_version
            attributes["server.address"] = scope.server
            attributes["client.address"] = scope.client
        if route:
            attributes["http.route"] = route
        if request.query:
            attributes["url.query"] = request.query
        user_agent = request.headers.get("user-agent")
        if user_agent is not None:
            attributes["user_agent.original"] = user_agent
        # below isn't part of semantic conventions but having path params is useful
        for key, value in (request.params or {}).items():
            attributes[f"http.route.param.{key}"] = value

        active_attrs: dict[str, str | int] = {
            "http.request.method": method,
            "url.scheme": scheme,
        }
        if route:
            active_attrs["http.route"] = route

        active_requests_counter.add(1, active_attrs)
        start = time.perf_counter()
        span = tracer.start_span(
            span_name,
            context=ctx,
            kind=SpanKind.SERVER,
            attributes=attributes,
        )

        def finished(response: Response) -> None:
            duration = time.perf_counter() - start
            active_requests_counter.add(-1, active_attrs)
            status = response.status_code
            span.set_attribute("http.response.status_code", status)
            if not route:
                span.update_name(f"{method} {status}")
            error = request.error
            if error is not None:
                span.record_exception(error)
                description = f"{type(error).__name__}: {error}"
                span.set_status(Status(StatusCode.ERROR, description))
            elif status >= 500:
                span.set_status(StatusCode.ERROR)
            duration_histogram.record(
                duration, {**active_attrs, "http.response.status_code": status}
            )
            span.end()

        response.on_finish(finished)
        # tasks and deferred steps started inside proceed() copy this context
        token = context.attach(trace.set_span_in_context(span, ctx))
        try:
            proceed()
        finally:
            context.detach(token)

    return traced
