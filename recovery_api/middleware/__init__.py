"""Middleware package for the password recovery API."""

from recovery_api.middleware.correlation import (
    CORRELATION_ID_HEADER,
    CorrelationIdMiddleware,
)
from recovery_api.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "CORRELATION_ID_HEADER",
    "SecurityHeadersMiddleware",
]
