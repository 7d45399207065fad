"""Middleware for request correlation."""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-Id"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_current_request_id() -> str | None:
    """Get the request id of the request being handled, if any."""
    return request_id_var.get()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request id to every request and echo it in the response."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with a correlation id.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response carrying the X-Request-Id header
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
