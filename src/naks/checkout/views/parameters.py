"""Parameter binding utilities."""
from typing import Any, Optional, TypeVar

from blacksheep import Request
from blacksheep.server.bindings import BodyBinder, BoundValue, QueryBinder
from cattrs import BaseValidationError
from loguru import logger
from naks.checkout.serialization import get_converter
from naks.checkout.serialization.json import json_loads
from naks.checkout.views.responses import BodyValidationError

T = TypeVar("T")


class AttrsBody(BoundValue[T]):
    """Parse an attrs class from the request body."""

    pass


class AttrsBinder(BodyBinder):
    """Binder for :class:`AttrsBody`."""

    handle = AttrsBody

    @property
    def content_type(self) -> str:
        return "application/json"

    def matches_content_type(self, request: Request) -> bool:
        return request.declares_json()

    async def read_data(self, request: Request) -> Any:
        return await request.json(loads=json_loads)

    def parse_value(self, data: dict) -> Any:
        try:
            return get_converter().structure(data, self.expected_type)
        except (BaseValidationError, ValueError) as e:
            logger.opt(exception=e).debug("Invalid request")
            raise BodyValidationError(e)


class BoundedQueryBinder(QueryBinder):
    """Binds a numeric query parameter, clamped to ``[minimum, maximum]``.

    A missing parameter gets ``default``.
    """

    handle = None  # abstract base: don't re-register FromQuery
    minimum: float = 0
    maximum: Optional[float] = None
    default: float = 0
    _value_type: type = int

    def __init__(self, expected_type=None, param_name=None, implicit=True):
        super().__init__(
            expected_type or self._value_type, param_name or self.name_alias, implicit
        )

    async def get_value(self, request: Request) -> Optional[Any]:
        value = await super().get_value(request)
        if value is None:
            return self.default
        value = max(value, self.minimum)
        return value if self.maximum is None else min(value, self.maximum)


class Page(BoundValue[int]):
    """The zero-based page number."""


class PerPage(BoundValue[int]):
    """The page size."""


class Wait(BoundValue[float]):
    """Seconds to long-poll for a change."""


class PageBinder(BoundedQueryBinder):
    handle = Page
    name_alias = "page"


class PerPageBinder(BoundedQueryBinder):
    handle = PerPage
    name_alias = "per_page"
    minimum = 1
    maximum = 50
    default = 50


class WaitBinder(BoundedQueryBinder):
    handle = Wait
    name_alias = "wait"
    maximum = 30.0
    default = 0.0
    _value_type = float
