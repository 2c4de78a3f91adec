"""JSON encoding.

orjson handles datetimes, UUIDs and enums itself. Other types are handled by
:func:`json_default`.
"""
from decimal import Decimal
from functools import singledispatch
from typing import Any, Union

import orjson


@singledispatch
def json_default(v: object) -> object:
    """Convert a value orjson cannot encode."""
    raise TypeError(f"Cannot JSON serialize type: {type(v)}")


@json_default.register(set)
@json_default.register(frozenset)
def _json_set(v) -> list:
    return sorted(v)


@json_default.register
def _json_decimal(v: Decimal) -> str:
    # amounts are kept exact
    return str(v)


def json_dumps(obj: object) -> bytes:
    return orjson.dumps(obj, default=json_default)


def json_loads(v: Union[str, bytes]) -> Any:
    return orjson.loads(v)
