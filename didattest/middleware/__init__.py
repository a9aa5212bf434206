import logging
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from ..errors import json_error


logger = logging.getLogger("didattest.request")


def get_request_id(request: Request) -> str:
    """Helper to read the request id from request.state, if set."""
    return getattr(request.state, "request_id", "")


def _attach_request_id(response: Response, request: Request) -> Response:
    request_id = get_request_id(request)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def json_error_response(
    request: Request,
    code: str,
    *,
    status_code: int = 400,
    detail: Optional[str] = None,
) -> JSONResponse:
    """JSON error response carrying X-Request-ID, for use outside the exception handlers."""

    response = json_error(code, status_code=status_code, detail=detail)
    _attach_request_id(response, request)
    return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request and log basic timing.

    - If the client provides `X-Request-ID`, we echo it back; otherwise we generate a UUIDv4.
    - The value lives in `request.state.request_id` and the response header.
    - Each request logs method, path, status code and elapsed milliseconds.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()
        request.state.started_at = start_time
        try:
            response = await call_next(request)
        except Exception:
            # Exception handlers build the body; only record timing here.
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception("Unhandled exception processing request")
            logger.info(
                "method=%s path=%s status=%s ms=%s request_id=%s",
                request.method,
                request.url.path,
                500,
                elapsed_ms,
                request_id,
            )
            raise

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "method=%s path=%s status=%s ms=%s request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return _attach_request_id(response, request)


__all__ = ["RequestContextMiddleware", "get_request_id", "json_error_response"]
