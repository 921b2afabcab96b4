"""Error taxonomy shared by the Gateway and the Manager.

Every layer that talks to Kubernetes, a peer component, or the ledger
classifies failures into one of a small closed set of kinds before
returning them upward. The outermost HTTP layer only maps a kind to a
status code and a ``{"error": <message>}`` body.
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base class for classified errors. Defaults to ``Internal``."""

    status: int = 500
    kind: str = "Internal"

    def __init__(self, message: str | BaseException) -> None:
        if isinstance(message, BaseException):
            self.cause: BaseException | None = message
            message = str(message)
        else:
            self.cause = None
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class BadRequest(GatewayError):
    status = 400
    kind = "BadRequest"


class Unauthorized(GatewayError):
    status = 401
    kind = "Unauthorized"


class Forbidden(GatewayError):
    status = 403
    kind = "Forbidden"


class NotFound(GatewayError):
    status = 404
    kind = "NotFound"


class AlreadyExists(GatewayError):
    status = 409
    kind = "AlreadyExists"


class Internal(GatewayError):
    status = 500
    kind = "Internal"


_BY_STATUS: dict[int, type[GatewayError]] = {
    cls.status: cls
    for cls in (BadRequest, Unauthorized, Forbidden, NotFound, AlreadyExists, Internal)
}


def classify(exc: BaseException, context: str = "") -> GatewayError:
    """Return *exc* classified: unchanged if it already is, else as ``Internal``.

    With *context* the message is prefixed (``"<context>: <message>"``)
    and a new error of the same kind is returned, chained to *exc*.
    """
    if not context:
        return exc if isinstance(exc, GatewayError) else Internal(exc)
    cls = type(exc) if isinstance(exc, GatewayError) else Internal
    wrapped = cls(f"{context}: {exc}")
    wrapped.cause = exc
    return wrapped


def from_status(status: int, message: str) -> GatewayError:
    """Rebuild an error kind from a peer component's HTTP status code."""
    return _BY_STATUS.get(status, Internal)(message)


def from_api_exception(exc: BaseException, context: str = "") -> GatewayError:
    """Classify a Kubernetes ``ApiException`` (or anything else).

    409 becomes ``AlreadyExists``, 404 becomes ``NotFound``; every other
    failure is ``Internal``.
    """
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None) or str(exc)
    message = f"{context}: {reason}" if context else str(reason)
    if status == 409:
        return AlreadyExists(message)
    if status == 404:
        return NotFound(message)
    return Internal(message)


def error_body(err: GatewayError, key: str = "error") -> dict[str, Any]:
    return {key: err.message}


def error_response(err: GatewayError, key: str = "error") -> JSONResponse:
    """Map a classified error to its HTTP response. Side-effect free."""
    return JSONResponse(status_code=err.status, content=error_body(err, key))
