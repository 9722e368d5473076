"""HTTP middleware for the Chimera API."""

from src.chimera.api.middleware.logging import LoggingMiddleware, configure_structlog

__all__ = ["LoggingMiddleware", "configure_structlog"]
