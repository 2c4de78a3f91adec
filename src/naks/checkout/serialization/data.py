"""Converter for request bodies, responses and stored model snapshots."""
from enum import Enum
from typing import Union, get_args, get_origin

from attr import resolve_types
from attrs import fields
from cattrs import Converter
from cattrs.gen import make_dict_unstructure_fn
from naks.checkout.serialization.common import CustomConverter
from naks.checkout.serialization.common import (
    configure_converter as configure_common,
)
from naks.checkout.views.responses import ExceptionDetails


def structure_without_cast(v, t):
    """Structure a primitive without casting, so ``"1"`` is not an ``int``.

    Ints are accepted for floats, and values for enums.
    """
    if isinstance(v, bool) and t is not bool:
        raise TypeError(f"Invalid type: {v!r}")
    elif isinstance(v, t):
        return v
    elif t is float and isinstance(v, int):
        return float(v)
    elif issubclass(t, Enum) and isinstance(v, (int, str)):
        return t(v)
    else:
        raise TypeError(f"Invalid type: {v!r}")


def _is_optional(t) -> bool:
    return get_origin(t) is Union and type(None) in get_args(t)


def make_unstructure_omitting_none(c: Converter, cls: type):
    """Unstructure an attrs class, leaving out optional fields that are None."""
    # field types may be strings
    resolve_types(cls)

    unstructure = make_dict_unstructure_fn(cls, c)
    optional = tuple(a.name for a in fields(cls) if _is_optional(a.type))
    if not optional:
        return unstructure

    def unstructure_omitting_none(v):
        data = unstructure(v)
        for name in optional:
            if name in data and data[name] is None:
                del data[name]
        return data

    return unstructure_omitting_none


def configure_converter(c: Converter):
    for t in (float, int, bool, str):
        c.register_structure_hook(t, structure_without_cast)

    c.register_unstructure_hook_factory(
        lambda cls: hasattr(cls, "__attrs_attrs__"),
        lambda cls: make_unstructure_omitting_none(c, cls),
    )

    # error responses leave out empty details
    c.register_unstructure_hook(
        ExceptionDetails,
        make_dict_unstructure_fn(ExceptionDetails, c, _cattrs_omit_if_default=True),
    )


converter = CustomConverter()
configure_common(converter)
configure_converter(converter)
