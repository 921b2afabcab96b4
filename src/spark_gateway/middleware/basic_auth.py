"""Regex allow/deny filters over the HTTP Basic username."""

from __future__ import annotations

import base64
import binascii
import re

from pydantic import field_validator

from spark_gateway.errors import Forbidden, Unauthorized
from spark_gateway.middleware.base import AuthFilter, FilterConf, RequestContext

INVALID_AUTH_HEADER = "invalid Authorization header"
USER_UNAUTHORIZED = "user is unauthorized"


def _compile_all(patterns: object, field: str) -> object:
    if not isinstance(patterns, (list, tuple)):
        return patterns
    compiled = []
    for p in patterns:
        if isinstance(p, str):
            try:
                p = re.compile(p)
            except re.error as e:
                raise ValueError(f"invalid {field} regex {p!r}: {e}") from e
        compiled.append(p)
    return compiled


def username_from_basic_auth(header: str) -> str:
    """Decode ``Basic <base64(user:password)>`` and return the username.

    Raises:
        Unauthorized: If the header is not a well-formed Basic credential.
    """
    scheme, sep, token = header.partition("Basic ")
    if scheme or not sep or not token:
        raise Unauthorized(INVALID_AUTH_HEADER)
    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise Unauthorized(INVALID_AUTH_HEADER) from e
    user_pass = decoded.split(":")
    if len(user_pass) != 2:
        raise Unauthorized(INVALID_AUTH_HEADER)
    return user_pass[0]


class RegexAllowConf(FilterConf):
    allow: tuple[re.Pattern[str], ...] = ()

    @field_validator("allow", mode="before")
    @classmethod
    def _compile(cls, v: object) -> object:
        return _compile_all(v, "allow")


class RegexDenyConf(FilterConf):
    deny: tuple[re.Pattern[str], ...] = ()

    @field_validator("deny", mode="before")
    @classmethod
    def _compile(cls, v: object) -> object:
        return _compile_all(v, "deny")


class RegexBasicAuthAllowFilter(AuthFilter):
    """Authenticates Basic-auth users whose name matches any allow regex.

    No ``Authorization`` header is a no-op. A present header that fails to
    decode is 401; a username matching nothing is 403, so an empty allow
    list denies every Basic-auth attempt.
    """

    type_name = "RegexBasicAuthAllowMiddleware"
    conf_model = RegexAllowConf
    conf: RegexAllowConf

    def apply(self, ctx: RequestContext) -> None:
        header = ctx.header("Authorization")
        if not header:
            return
        user = username_from_basic_auth(header)
        if any(p.search(user) for p in self.conf.allow):
            ctx.user = user
            return
        raise Forbidden(USER_UNAUTHORIZED)


class RegexBasicAuthDenyFilter(AuthFilter):
    """Rejects Basic-auth users whose name matches any deny regex.

    Never sets the identity itself.
    """

    type_name = "RegexBasicAuthDenyMiddleware"
    conf_model = RegexDenyConf
    conf: RegexDenyConf

    def apply(self, ctx: RequestContext) -> None:
        header = ctx.header("Authorization")
        if not header:
            return
        user = username_from_basic_auth(header)
        if any(p.search(user) for p in self.conf.deny):
            raise Forbidden(USER_UNAUTHORIZED)
