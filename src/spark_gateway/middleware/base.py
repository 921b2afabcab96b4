"""Building blocks shared by all authentication filters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar

from pydantic import BaseModel, ConfigDict

ANONYMOUS_USER = "anonymous"


@dataclass
class RequestContext:
    """Per-request view handed to each filter.

    ``headers`` must be case-insensitive (Starlette ``Headers`` is).
    ``user`` stays None until a filter authenticates the caller.
    """

    headers: Mapping[str, str]
    user: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None

    def header(self, name: str) -> str:
        return self.headers.get(name) or ""


class FilterConf(BaseModel):
    """Base for filter configuration models. Frozen once validated."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class AuthFilter(ABC):
    """One step of the authentication chain.

    ``apply`` either returns (continue with the next filter) or raises
    ``Unauthorized``/``Forbidden`` (abort the request).
    """

    type_name: ClassVar[str]
    conf_model: ClassVar[type[FilterConf]]

    def __init__(self, conf: FilterConf) -> None:
        self.conf = conf

    @abstractmethod
    def apply(self, ctx: RequestContext) -> None: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
