"""
Middleware components for request processing.
"""

from bikemanager.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware"]
