"""OpenTelemetry tracing and metrics middleware.

Creates HTTP server spans and metrics with semantic conventions for each request.

Install with: pip install "chainmux[otel]"
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chainmux.http import Request, Response

try:
    from opentelemetry import metrics, trace
    from opentelemetry.propagate import extract
    from opentelemetry.trace import (
        SpanKind,
        StatusCode,
        TracerProvider,
    )
except ImportError as e:
    msg = (
        "OpenTelemetry middleware requires the 'otel' extra. "
        "Install with: pip install 'chainmux[otel]'"
    )
    raise ImportError(msg) from e

from chainmux.routes import http_route

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
) -> Callable[[Request, Response, Callable[[], Awaitable[None]]], Awaitable[None]]:
    """Create OpenTelemetry tracing and metrics middleware.

    Wraps the rest of the chain in a server span with HTTP semantic
    conventions. Register it first with `router.use(...)` so the span covers
    every other middleware and the handler.

    Extracts trace context from incoming request headers (e.g. ``traceparent``)
    for distributed tracing. Only depends on ``opentelemetry-api``; users bring
    their own SDK and exporters.

    Metrics emitted:
        - ``http.server.request.duration`` (histogram, seconds)
        - ``http.server.active_requests`` (up-down counter)

    Args:
        tracer_provider: Optional TracerProvider. If None, uses the global provider.
        meter_provider: Optional MeterProvider. If None, uses the global provider.

    Example:
        router.use(otel())
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

    async def traced(
        request: Request,
        response: Response,
        next: Callable[[], Awaitable[None]],  # noqa: A002
    ) -> None:
        # Extract propagated context from request headers
        ctx = extract(request.headers)

        # Matched route template, set by Router.handle before the chain runs
        route = http_route.get("")

        method = request.method
        span_name = f"{method} {route}" if route else method

        # Span attributes (stable HTTP semantic conventions)
        attributes: dict[str, str | int] = {
            "http.request.method": method,
            "url.path": request.path,
            "url.scheme": request.scheme,
            "network.protocol.version": request.http_version,
        }
        if request.client:
            attributes["client.address"] = request.client
        if route:
            attributes["http.route"] = route
        if request.query_string:
            attributes["url.query"] = request.query_string
        user_agent = request.header("user-agent")
        if user_agent is not None:
            attributes["user_agent.original"] = user_agent

        # Metric attributes (required + conditionally required per semconv)
        active_attrs: dict[str, str | int] = {
            "http.request.method": method,
            "url.scheme": request.scheme,
        }
        if route:
            active_attrs["http.route"] = route

        active_requests_counter.add(1, active_attrs)
        start = time.perf_counter()

        with tracer.start_as_current_span(
            span_name,
            context=ctx,
            kind=SpanKind.SERVER,
            attributes=attributes,
            record_exception=True,
            set_status_on_exception=True,
        ) as span:
            try:
                await next()
            finally:
                duration = time.perf_counter() - start
                active_requests_counter.add(-1, active_attrs)
                # not part of semantic conventions but having path params is useful
                for key, value in request.params.items():
                    span.set_attribute(f"http.route.param.{key}", value)
                duration_attrs = dict(active_attrs)
                if response.headers_sent:
                    status = response.status_code
                    span.set_attribute("http.response.status_code", status)
                    duration_attrs["http.response.status_code"] = status
                    if not route:
                        span.update_name(f"{method} {status}")
                    if status >= 500:
                        span.set_status(StatusCode.ERROR)
                duration_histogram.record(duration, duration_attrs)

    return traced
