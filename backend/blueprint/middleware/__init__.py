"""Middleware module initialization."""

from blueprint.middleware.audit_logger import AuditLoggerMiddleware
from blueprint.middleware.prometheus import PrometheusMiddleware
from blueprint.middleware.request_id import RequestIdMiddleware

__all__ = [
    "AuditLoggerMiddleware",
    "PrometheusMiddleware",
    "RequestIdMiddleware",
]
