"""HTTP plumbing shared by the Gateway and Manager apps."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from spark_gateway.errors import BadRequest, GatewayError, Internal, error_response

logger = logging.getLogger(__name__)


def _format_validation(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts) or "invalid request"


def install_error_handling(app: FastAPI, body_keys: Mapping[str, str] | None = None) -> None:
    """Map classified errors to ``{"error": ...}`` responses and recover from
    anything unexpected with a logged 500.

    *body_keys* maps a path prefix to the key its error bodies use instead
    of ``error``; the longest matching prefix wins.
    """
    prefixes = sorted((body_keys or {}).items(), key=lambda kv: len(kv[0]), reverse=True)

    def _respond(request: Request, err: GatewayError) -> JSONResponse:
        path = request.url.path
        for prefix, key in prefixes:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return error_response(err, key)
        return error_response(err)

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return _respond(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _respond(request, BadRequest(_format_validation(exc)))

    @app.middleware("http")
    async def _recover(request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error serving %s %s", request.method, request.url.path)
            return _respond(request, Internal("internal server error"))


def health_router(ready: Callable[[], str | None] | None = None) -> APIRouter:
    """Build a router with ``/healthz`` and, when *ready* is given, ``/readyz``.

    *ready* returns ``None`` when ready, or a reason string when not.
    """
    router = APIRouter(tags=["health"])

    @router.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    if ready is not None:

        @router.get("/readyz")
        def readyz() -> JSONResponse:
            reason = ready()
            if reason is not None:
                return JSONResponse(status_code=503, content={"error": reason})
            return JSONResponse(status_code=200, content={"status": "ready"})

    return router
