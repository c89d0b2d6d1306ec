"""
RequestContext Middleware - Adds request tracking to all requests.

Every request gets a request_id, stored in request.state, bound into the
structlog context (so every log line emitted while handling the request
carries it) and echoed back in the X-Request-ID response header.
"""

import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Adds to request.state:
    - request_id: UUID for tracing this request (reuses a valid inbound X-Request-ID)
    - ip_address: Client IP address
    """

    async def dispatch(self, request: Request, call_next):
        request_id = self._inbound_request_id(request) or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = request.client.host if request.client else None

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            logger.debug(
                "Request started",
                method=request.method,
                path=request.url.path,
                ip_address=request.state.ip_address,
            )
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response

    def _inbound_request_id(self, request: Request) -> str | None:
        value = request.headers.get("x-request-id")
        if not value:
            return None
        try:
            return str(uuid.UUID(value))
        except ValueError:
            return None
