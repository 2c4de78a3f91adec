"""OpenAPI docs."""
import functools
from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any, Optional, Type, TypeVar, Union, cast, get_args, get_origin

from attrs import Attribute, fields
from blacksheep.server.openapi.common import ContentInfo, ResponseInfo
from blacksheep.server.openapi.v3 import FieldInfo, ObjectTypeHandler, OpenAPIHandler
from naks.checkout.serialization import get_converter
from openapidocs.v3 import (
    HTTPSecurity,
    Info,
    OpenAPI,
    Reference,
    Schema,
    Security,
    SecurityRequirement,
    ValueType,
)

T = TypeVar("T")


class Handler(OpenAPIHandler):
    def on_docs_generated(self, docs: OpenAPI):
        # guests may call most endpoints without a token
        docs.security = Security(
            requirements=[SecurityRequirement("accessToken", [])],
            optional=True,
        )


docs = Handler(info=Info(title="Naks Yetu Checkout API", version="0.1"))
"""Docs object."""

docs.components.security_schemes = {
    "accessToken": HTTPSecurity(scheme="bearer", bearer_format="JWT"),
}


def get_amount_schema(nullable: bool = False) -> Schema:
    """Schema for amounts, which are sent as decimal strings like ``"1500.00"``."""
    return Schema(type=ValueType.STRING, format="decimal", nullable=nullable)


def _unwrap_optional(type_: object) -> tuple[object, bool]:
    if get_origin(type_) is Union:
        args = [a for a in get_args(type_) if a is not type(None)]
        if len(args) == 1:
            return args[0], True
    return type_, False


class AttrsTypeHandler(ObjectTypeHandler):
    """Schema generator for attrs classes."""

    _no_register_types = (int, float, str, bool, Any)

    def __init__(self, docs: OpenAPIHandler):
        self.docs = docs

    def handles_type(self, object_type) -> bool:
        return hasattr(object_type, "__attrs_attrs__")

    def get_schema(self, type_) -> Union[Schema, Reference]:
        if type_ is Decimal:
            return get_amount_schema()
        elif type_ in self._no_register_types:
            return self.docs.get_schema_by_type(type_)
        else:
            return self.docs.register_schema_for_type(type_)

    def get_union_schema(self, type_) -> Schema:
        args = get_args(type_)
        return Schema(
            one_of=[self.get_schema(arg) for arg in args if arg is not type(None)],
            nullable=type(None) in args,
        )

    def get_field_info(self, field: Attribute) -> FieldInfo:
        inner, optional = _unwrap_optional(field.type)
        if inner is Decimal:
            return FieldInfo(field.name, get_amount_schema(nullable=optional))
        elif optional or field.type is Any:
            return FieldInfo(field.name, field.type)
        elif get_origin(field.type) is Union:
            return FieldInfo(field.name, self.get_union_schema(field.type))
        else:
            return FieldInfo(field.name, field.type)

    def get_type_fields(self, object_type) -> list[FieldInfo]:
        return [
            self.get_field_info(field)
            for field in fields(object_type)
            if not field.name.startswith("_")
        ]


docs.object_types_handlers.append(AttrsTypeHandler(docs))


def _get_serializer(type_: object) -> Callable[[object], Any]:
    if isinstance(type_, type) or get_origin(type_) is not None:
        return lambda v: get_converter().unstructure(v, unstructure_as=type_)
    else:
        return lambda v: v


def docs_helper(
    *,
    response_type: Optional[object] = None,
    response_summary: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
):
    """Document a view handler.

    When ``response_type`` is given, the handler's return value is unstructured
    as that type before BlackSheep writes it as JSON.
    """
    responses = {}
    serializer = None

    if response_type is not None:
        responses[200] = ResponseInfo(
            description=response_summary or "The result",
            content=[ContentInfo(type=cast(Type, response_type))],
        )
        serializer = _get_serializer(response_type)

    docs_decorator = docs(responses=responses, tags=tags)

    def decorator(fn):
        if serializer is not None:
            handler = fn

            @functools.wraps(handler)
            async def fn(*args, **kwargs):
                return serializer(await handler(*args, **kwargs))

        return docs_decorator(fn)

    return decorator
