"""Prometheus metrics for py3wallet with standalone HTTP server.

This module defines and exposes all Prometheus metrics used by py3wallet.
Metrics are served on a separate port using prometheus_client's built-in HTTP server.

The service runs a single Granian worker (session state is process-local),
so a plain CollectorRegistry is used without multi-process collection.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from litestar import Controller, get
from litestar.response import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

if TYPE_CHECKING:
    from wsgiref.simple_server import WSGIServer

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry()

# Application info
APP_INFO = Info(
    "py3wallet_build_info",
    "Build information about py3wallet",
    registry=REGISTRY,
)
APP_INFO.info({"version": "0.1.0", "name": "py3wallet"})

# Derivation metrics
DERIVATIONS_TOTAL = Counter(
    "derivations_total",
    "Total number of address derivations",
    ["script_type"],
    registry=REGISTRY,
)

DERIVATION_DURATION_SECONDS = Histogram(
    "derivation_duration_seconds",
    "Time spent deriving keys and addresses",
    ["script_type"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=REGISTRY,
)

DERIVATION_ERRORS_TOTAL = Counter(
    "derivation_errors_total",
    "Total number of derivation errors",
    ["error_type"],
    registry=REGISTRY,
)

# Address cache metrics
ADDRESS_CACHE_HITS_TOTAL = Counter(
    "address_cache_hits_total",
    "Address lookups served from the cache",
    registry=REGISTRY,
)

ADDRESS_CACHE_MISSES_TOTAL = Counter(
    "address_cache_misses_total",
    "Address lookups that required derivation",
    registry=REGISTRY,
)

# Session metrics
AUTH_ATTEMPTS_TOTAL = Counter(
    "auth_attempts_total",
    "Authentication attempts by method and outcome",
    ["method", "outcome"],
    registry=REGISTRY,
)

SESSION_TRANSITIONS_TOTAL = Counter(
    "session_transitions_total",
    "Session state transitions",
    ["state", "reason"],
    registry=REGISTRY,
)

SESSION_UNLOCKED = Gauge(
    "session_unlocked",
    "1 while the session is unlocked, else 0",
    registry=REGISTRY,
)

# Storage metrics
STORAGE_OPERATIONS_TOTAL = Counter(
    "storage_operations_total",
    "Secure storage operations by outcome",
    ["operation", "outcome"],
    registry=REGISTRY,
)

WALLETS_STORED = Gauge(
    "wallets_stored",
    "Number of wallet seeds currently stored",
    registry=REGISTRY,
)

# HTTP metrics
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "Time spent processing HTTP requests",
    ["method", "endpoint"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)


def get_metrics_output() -> bytes:
    """Generate Prometheus-formatted metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


class MetricsController(Controller):  # type: ignore[misc]
    """Prometheus metrics HTTP endpoints.

    In production, metrics are served on a separate port via the standalone
    metrics server. This controller is used by tests.
    """

    path = "/"

    @get("/metrics")  # type: ignore[untyped-decorator]
    async def metrics(self) -> Response:
        """Handler for the /metrics endpoint."""
        return Response(
            content=get_metrics_output(),
            headers={"Content-Type": get_metrics_content_type()},
        )


class MetricsServer:
    """Standalone Prometheus metrics HTTP server using prometheus_client.start_http_server.

    This runs the metrics endpoint on a separate port from the main API,
    allowing metrics to be scraped independently.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8081) -> None:
        self._host = host
        self._port = port
        self._httpd: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._httpd is not None

    def start(self) -> None:
        """Start the metrics server.

        start_http_server() serves from its own daemon thread and returns
        the server and thread so they can be shut down later.
        """
        self._httpd, self._thread = start_http_server(
            port=self._port,
            addr=self._host,
            registry=REGISTRY,
        )
        logger.info(
            f"Metrics server started at http://{self._host}:{self._port}/metrics",
        )

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._httpd is not None:
            try:
                self._httpd.shutdown()
                self._httpd.server_close()
            except OSError:
                logger.exception("Error stopping metrics server")
            finally:
                self._httpd = None

        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

        logger.info("Metrics server stopped")
