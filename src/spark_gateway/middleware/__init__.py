"""Config-driven authentication chain for the Gateway."""

from spark_gateway.middleware.base import ANONYMOUS_USER, AuthFilter, RequestContext
from spark_gateway.middleware.chain import (
    REGISTRY,
    MiddlewareChain,
    MiddlewareConfigError,
    build_chain,
)

__all__ = [
    "ANONYMOUS_USER",
    "REGISTRY",
    "AuthFilter",
    "MiddlewareChain",
    "MiddlewareConfigError",
    "RequestContext",
    "build_chain",
]
