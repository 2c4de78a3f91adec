from collections.abc import Sequence
from decimal import Decimal
from typing import Optional

import pytest
from attrs import frozen
from cattrs import BaseValidationError, Converter
from naks.checkout.models.coupon import Coupon, DiscountType
from naks.checkout.views.responses import ExceptionDetails


@pytest.fixture
def converter():
    from naks.checkout.serialization.data import converter

    return converter


@pytest.mark.parametrize(
    "input_, type_, expected",
    [
        (1, int, 1),
        (1.5, float, 1.5),
        (True, bool, True),
        (1, float, 1.0),
        (1, Optional[int], 1),
        (
            ["a", "b", "c"],
            Sequence[str],
            ("a", "b", "c"),
        ),
        ("2500.50", Decimal, Decimal("2500.50")),
    ],
)
def test_structure(converter: Converter, input_, type_, expected):
    result = converter.structure(input_, type_)
    assert result == expected


@pytest.mark.parametrize(
    "input_, type_",
    [
        ("1", int),
        ("true", bool),
        (1, bool),
        (True, int),
        (123, str),
        ("123", Optional[int]),
    ],
)
def test_structure_no_cast(converter: Converter, input_, type_):
    with pytest.raises((TypeError, BaseValidationError)):
        converter.structure(input_, type_)


def test_structure_coupon(converter: Converter):
    coupon = converter.structure(
        {
            "code": " naksyetu20 ",
            "discount_type": "percentage",
            "discount_value": "20",
            "minimum_order_amount": 1000,
        },
        Coupon,
    )
    assert coupon.code == "NAKSYETU20"
    assert coupon.discount_type == DiscountType.percentage
    assert coupon.discount_value == Decimal("20")
    assert coupon.minimum_order_amount == Decimal("1000")


def test_unstructure_exception_details(converter: Converter):
    result = converter.unstructure(
        ExceptionDetails(
            detail="Validation error",
            children=[ExceptionDetails(exception="ValueError")],
        )
    )
    assert result == {
        "detail": "Validation error",
        "children": [{"exception": "ValueError"}],
    }


@frozen
class Model:
    a: Optional[int] = 1
    b: Optional[Decimal] = None


@pytest.mark.parametrize(
    "input_, expected",
    [
        (Model(1, Decimal("2.50")), {"a": 1, "b": "2.50"}),
        (Model(), {"a": 1}),
        (Model(a=None), {}),
    ],
)
def test_unstructure_omit_none(converter: Converter, input_, expected):
    result = converter.unstructure(input_)
    assert result == expected
