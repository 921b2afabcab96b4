"""Shared-secret authentication for trusted services."""

from __future__ import annotations

import hmac
from pathlib import Path

import yaml
from pydantic import Field

from spark_gateway.config import DEFAULT_SERVICE_TOKEN_MAP_FILE
from spark_gateway.errors import Forbidden, Unauthorized
from spark_gateway.middleware.base import AuthFilter, FilterConf, RequestContext

SERVICE_USER_HEADER = "X-Spark-Gateway-User"
SERVICE_TOKEN_HEADER = "X-Spark-Gateway-Token"


class ServiceTokenConf(FilterConf):
    service_token_map_file: str = Field(
        default=DEFAULT_SERVICE_TOKEN_MAP_FILE, alias="serviceTokenMapFile", min_length=1
    )


def load_service_tokens(path: str | Path) -> dict[str, str]:
    """Read a YAML ``service: token`` mapping.

    Raises:
        ValueError: If the file cannot be read or is not a flat string mapping.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ValueError(f"cannot read service token map file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML in service token map file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"service token map file {path} must be a mapping")
    tokens: dict[str, str] = {}
    for service, token in raw.items():
        if not isinstance(token, (str, int)) or isinstance(token, bool):
            raise ValueError(f"token for service '{service}' must be a string")
        tokens[str(service)] = str(token)
    return tokens


class ServiceTokenAuthFilter(AuthFilter):
    """Authenticates ``X-Spark-Gateway-User`` by its ``X-Spark-Gateway-Token``.

    The token map is read once, when the filter is built.
    """

    type_name = "ServiceTokenAuthMiddleware"
    conf_model = ServiceTokenConf
    conf: ServiceTokenConf

    def __init__(self, conf: ServiceTokenConf) -> None:
        super().__init__(conf)
        self._tokens = load_service_tokens(conf.service_token_map_file)

    def apply(self, ctx: RequestContext) -> None:
        service = ctx.header(SERVICE_USER_HEADER)
        if not service:
            return
        token = ctx.header(SERVICE_TOKEN_HEADER)
        if not token:
            raise Unauthorized(f"{SERVICE_TOKEN_HEADER} is not set")
        expected = self._tokens.get(service)
        if expected is None:
            raise Forbidden(f"service {service} not authorized")
        if not hmac.compare_digest(token.encode(), expected.encode()):
            raise Unauthorized(f"service {service} not authorized: Invalid token")
        ctx.user = service
