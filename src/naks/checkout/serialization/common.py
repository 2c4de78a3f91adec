"""Common converters."""
from collections.abc import Callable, Sequence
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Tuple, Type, TypeVar, Union, get_args, get_origin
from uuid import UUID

from cattrs import Converter
from naks.checkout.money import to_amount
from naks.checkout.serialization.json import json_dumps, json_loads

T = TypeVar("T")


class CustomConverter(Converter):
    """Converter that uses orjson."""

    def dumps(self, obj: object, unstructure_as=None) -> bytes:
        unstructured = self.unstructure(obj, unstructure_as)
        return json_dumps(unstructured)

    def loads(self, value: Union[str, bytes], cl: Type[T]) -> T:
        obj = json_loads(value)
        return self.structure(obj, cl)


def structure_datetime(v: object) -> datetime:
    """Structure a datetime from an ISO string or a UNIX timestamp.

    Naive datetimes are taken to be local time.
    """
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, (float, int)) and not isinstance(v, bool):
        dt = datetime.fromtimestamp(v, tz=timezone.utc)
    elif isinstance(v, str):
        dt = datetime.fromisoformat(v)
    else:
        raise TypeError(f"Invalid datetime: {v!r}")

    return dt if dt.tzinfo is not None else dt.astimezone()


def _make_parser(type_: type, parse: Callable[[str], Any]):
    def structure(v: object, t: object) -> Any:
        if isinstance(v, type_):
            return v
        elif isinstance(v, str):
            return parse(v)
        else:
            raise TypeError(f"Invalid {type_.__name__}: {v!r}")

    return structure


# Sequence[T] is structured as tuple[T, ...]
def structure_sequence(c: Converter, v: object, t: object) -> tuple:
    (item_type,) = get_args(t)
    return c.structure(v, Tuple[item_type, ...])


def configure_converter(c: Converter):
    """Add hooks for the types used throughout the models."""
    c.register_structure_hook(datetime, lambda v, t: structure_datetime(v))
    c.register_structure_hook(date, _make_parser(date, date.fromisoformat))
    c.register_structure_hook(time, _make_parser(time, time.fromisoformat))
    c.register_structure_hook(UUID, _make_parser(UUID, UUID))
    c.register_structure_hook(Decimal, lambda v, t: to_amount(v))

    c.register_structure_hook_func(
        lambda cls: get_origin(cls) is Sequence,
        lambda v, t: structure_sequence(c, v, t),
    )

    c.register_unstructure_hook(Decimal, str)


converter = CustomConverter()
configure_converter(converter)
