"""ASGI middleware for Prometheus HTTP metrics."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from .metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL

if TYPE_CHECKING:
    from litestar.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


def _endpoint_label(scope: Scope) -> str:
    """Return the route template so wallet ids do not explode label cardinality."""
    template = scope.get("path_template")
    if template:
        return str(template)
    route_handler = scope.get("route_handler")
    if route_handler is not None and route_handler.paths:
        return sorted(route_handler.paths)[0]
    return "unmatched"


def metrics_middleware(app: ASGIApp) -> ASGIApp:
    """Wrap app to track request count and duration per route.

    Tracks:
    - Total requests by method, endpoint pattern, and status code
    - Request duration by method and endpoint pattern
    """

    async def middleware(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status = "500"

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = str(message["status"])
            await send(message)

        try:
            await app(scope, receive, send_wrapper)
        finally:
            duration = time.perf_counter() - start_time
            endpoint = _endpoint_label(scope)
            method = scope["method"]
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=endpoint).observe(duration)
            HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=endpoint, status=status).inc()

    return middleware
