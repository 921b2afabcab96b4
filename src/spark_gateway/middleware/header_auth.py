"""Identity from trusted request headers (e.g. set by an upstream proxy)."""

from __future__ import annotations

import re

from pydantic import Field, field_validator

from spark_gateway.middleware.base import AuthFilter, FilterConf, RequestContext


class HeaderRule(FilterConf):
    key: str = Field(min_length=1)
    validation: re.Pattern[str] | None = None

    @field_validator("validation", mode="before")
    @classmethod
    def _compile(cls, v: object) -> object:
        if isinstance(v, str):
            if not v:
                return None
            try:
                return re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid validation regex {v!r}: {e}") from e
        return v

    def accepts(self, value: str) -> bool:
        return self.validation is None or self.validation.search(value) is not None


class HeaderAuthConf(FilterConf):
    headers: tuple[HeaderRule, ...] = ()


class HeaderAuthFilter(AuthFilter):
    """Sets the identity to the first configured header that is present,
    non-empty and passes its validation regex.

    Does nothing when an earlier filter already set the identity, and
    never aborts.
    """

    type_name = "HeaderAuthMiddleware"
    conf_model = HeaderAuthConf
    conf: HeaderAuthConf

    def apply(self, ctx: RequestContext) -> None:
        if ctx.authenticated:
            return
        for rule in self.conf.headers:
            value = ctx.header(rule.key)
            if value and rule.accepts(value):
                ctx.user = value
                return
