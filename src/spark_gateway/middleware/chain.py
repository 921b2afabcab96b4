"""Middleware registry and chain construction.

The chain is built once at start-up from ``gateway.middleware`` and then
shared read-only by every request. Construction is all-or-nothing: any
unknown type or invalid conf aborts with ``MiddlewareConfigError``.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import Request
from pydantic import ValidationError

from spark_gateway.config import MiddlewareDefinition
from spark_gateway.middleware.base import ANONYMOUS_USER, AuthFilter, RequestContext
from spark_gateway.middleware.basic_auth import (
    RegexBasicAuthAllowFilter,
    RegexBasicAuthDenyFilter,
)
from spark_gateway.middleware.header_auth import HeaderAuthFilter
from spark_gateway.middleware.service_auth import ServiceTokenAuthFilter

logger = logging.getLogger(__name__)

REGISTRY: Mapping[str, type[AuthFilter]] = {
    cls.type_name: cls
    for cls in (
        RegexBasicAuthAllowFilter,
        RegexBasicAuthDenyFilter,
        HeaderAuthFilter,
        ServiceTokenAuthFilter,
    )
}


class MiddlewareConfigError(Exception):
    """Raised when the middleware chain cannot be built from config."""


class MiddlewareChain:
    """An ordered, immutable sequence of filters.

    Instances are FastAPI dependencies: ``Depends(chain)`` runs every
    filter against the request headers and returns the caller's name.
    ``request.state.identity`` holds the authenticated name or None;
    ``request.state.user`` holds the same with None shown as the
    anonymous sentinel.
    """

    def __init__(self, filters: Iterable[AuthFilter] = ()) -> None:
        self._filters = tuple(filters)

    @property
    def filters(self) -> tuple[AuthFilter, ...]:
        return self._filters

    def __len__(self) -> int:
        return len(self._filters)

    def __bool__(self) -> bool:
        # FastAPI rejects falsy dependencies, and an empty chain is valid
        return True

    def run(self, ctx: RequestContext) -> str | None:
        """Apply every filter; returns the identity, or None if nobody claimed it."""
        for f in self._filters:
            f.apply(ctx)
        return ctx.user

    def __call__(self, request: Request) -> str:
        ctx = RequestContext(headers=request.headers)
        identity = self.run(ctx)
        user = identity if identity is not None else ANONYMOUS_USER
        request.state.identity = identity
        request.state.user = user
        return user


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "conf"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def build_filter(definition: MiddlewareDefinition | Mapping[str, Any]) -> AuthFilter:
    """Construct one filter from a ``{type, conf}`` definition."""
    if not isinstance(definition, MiddlewareDefinition):
        try:
            definition = MiddlewareDefinition.model_validate(definition)
        except ValidationError as e:
            raise MiddlewareConfigError(f"invalid middleware definition: {_describe(e)}") from e

    cls = REGISTRY.get(definition.type)
    if cls is None:
        raise MiddlewareConfigError(f"no builtin middleware with type [{definition.type}]")

    try:
        conf = cls.conf_model.model_validate(definition.conf)
    except ValidationError as e:
        raise MiddlewareConfigError(
            f"invalid conf for middleware [{definition.type}]: {_describe(e)}"
        ) from e

    try:
        return cls(conf)
    except ValueError as e:
        raise MiddlewareConfigError(
            f"error building middleware [{definition.type}]: {e}"
        ) from e


def build_chain(
    definitions: Iterable[MiddlewareDefinition | Mapping[str, Any]],
) -> MiddlewareChain:
    """Build the chain in definition order, failing on the first bad entry."""
    filters = []
    for definition in definitions:
        f = build_filter(definition)
        logger.info("Added middleware %s", f.type_name)
        filters.append(f)
    return MiddlewareChain(filters)
