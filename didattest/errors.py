import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger("didattest.errors")


class DidAttestError(Exception):
    """Base exception for verification and attestation failures."""

    code = "didattest_error"

    def __init__(self, detail: str, status_code: int = 400, *, code: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        if code:
            self.code = code


class FormatError(DidAttestError):
    """Malformed DID or identifier. Raised before any I/O happens."""

    code = "format_error"

    def __init__(self, detail: str, *, code: Optional[str] = None) -> None:
        super().__init__(detail, status_code=400, code=code)


class NotFoundError(DidAttestError):
    code = "not_found"

    def __init__(self, detail: str, *, code: Optional[str] = None) -> None:
        super().__init__(detail, status_code=404, code=code)


class MismatchError(DidAttestError):
    """An address, amount, sender or recipient did not match."""

    code = "mismatch"

    def __init__(
        self,
        detail: str,
        *,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(detail, status_code=403, code=code)
        self.expected = expected
        self.actual = actual


class TransientNetworkError(DidAttestError):
    """DNS or RPC failure that survived the retry policy."""

    code = "transient_network_error"

    def __init__(self, detail: str, *, code: Optional[str] = None) -> None:
        super().__init__(detail, status_code=502, code=code)


class ConfigurationError(DidAttestError):
    """Missing or invalid signer/client configuration. Always fatal."""

    code = "configuration_error"

    def __init__(self, detail: str, *, code: Optional[str] = None) -> None:
        super().__init__(detail, status_code=500, code=code)


def json_error(
    code: str,
    *,
    status_code: int = 400,
    detail: Optional[str] = None,
    elapsed: Optional[str] = None,
) -> JSONResponse:
    payload: Dict[str, Any] = {"error": code, "detail": detail or code}
    if elapsed:
        payload["elapsed"] = elapsed
    return JSONResponse(status_code=status_code, content=payload)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _elapsed(request: Request) -> Optional[str]:
    started = getattr(request.state, "started_at", None)
    if started is None:
        return None
    return f"{int((time.perf_counter() - started) * 1000)}ms"


def _with_request_id(response: JSONResponse, request: Request) -> JSONResponse:
    request_id = _get_request_id(request)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DidAttestError)
    async def didattest_exception_handler(request: Request, exc: DidAttestError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.detail)
        resp = json_error(exc.code, status_code=exc.status_code, detail=exc.detail, elapsed=_elapsed(request))
        return _with_request_id(resp, request)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        status = exc.status_code
        # Map common status codes to canonical error codes
        code_map = {
            400: "bad_request",
            403: "forbidden",
            404: "not_found",
            405: "method_not_allowed",
            422: "validation_error",
            429: "rate_limited",
        }
        code = code_map.get(status, "http_error")
        detail_str = str(getattr(exc, "detail", code))
        resp = json_error(code, status_code=status, detail=detail_str, elapsed=_elapsed(request))
        return _with_request_id(resp, request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        resp = json_error("validation_error", status_code=422, detail=str(exc), elapsed=_elapsed(request))
        return _with_request_id(resp, request)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled server error: %s", exc)
        resp = json_error("internal_error", status_code=500, detail="unexpected server error")
        return _with_request_id(resp, request)


__all__ = [
    "ConfigurationError",
    "DidAttestError",
    "FormatError",
    "MismatchError",
    "NotFoundError",
    "TransientNetworkError",
    "install_exception_handlers",
    "json_error",
]
