"""
Prometheus Metrics Middleware
Collects metrics on HTTP requests, backend fetches, auth attempts and
state-store mutations.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_client import Counter, Histogram
from prometheus_client import CollectorRegistry

# Create a global registry for metrics
metrics_registry = CollectorRegistry()

# HTTP Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=metrics_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
    registry=metrics_registry
)

# Backend Metrics
backend_fetch_attempts_total = Counter(
    'backend_fetch_attempts_total',
    'Table fetch attempts by outcome (success, error, timeout)',
    ['table', 'outcome'],
    registry=metrics_registry
)

# Authentication Metrics
auth_attempts_total = Counter(
    'auth_attempts_total',
    'Total authentication attempts',
    ['method', 'status'],
    registry=metrics_registry
)

# Store Metrics
store_mutations_total = Counter(
    'store_mutations_total',
    'State store mutations by operation and result',
    ['operation', 'status'],
    registry=metrics_registry
)

# Error Metrics
errors_total = Counter(
    'errors_total',
    'Total errors by type',
    ['error_type', 'endpoint'],
    registry=metrics_registry
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect Prometheus metrics for HTTP requests
    """

    # Endpoints to skip (health checks, metrics endpoint, etc)
    SKIP_ENDPOINTS = ['/metrics', '/docs', '/openapi.json', '/redoc']

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if any(request.url.path.startswith(skip) for skip in self.SKIP_ENDPOINTS):
            return await call_next(request)

        start_time = time.time()
        method = request.method
        endpoint = request.url.path

        try:
            response = await call_next(request)
        except Exception as exc:
            errors_total.labels(
                error_type=type(exc).__name__,
                endpoint=endpoint
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)
            raise

        duration = time.time() - start_time
        # Route template keeps label cardinality bounded (/settings/{setting_id}).
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or endpoint

        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

        response.headers["X-Response-Time"] = str(duration)
        return response


# Metric update functions for application events

def record_fetch_attempt(table: str, outcome: str) -> None:
    """Record one table fetch attempt"""
    backend_fetch_attempts_total.labels(table=table, outcome=outcome).inc()


def record_auth_attempt(method: str, success: bool) -> None:
    """Record an authentication attempt"""
    status = "success" if success else "failure"
    auth_attempts_total.labels(method=method, status=status).inc()


def record_mutation(operation: str, success: bool) -> None:
    """Record a state store mutation"""
    status = "success" if success else "failure"
    store_mutations_total.labels(operation=operation, status=status).inc()
