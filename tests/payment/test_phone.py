import pytest
from naks.checkout.payment.phone import is_valid_phone_number, normalize_phone_number


@pytest.mark.parametrize(
    "value, expected",
    [
        ("0712345678", "254712345678"),
        ("0112345678", "254112345678"),
        ("254712345678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("0712 345 678", "254712345678"),
        ("0712-345-678", "254712345678"),
        ("+254 (712) 345678", "254712345678"),
    ],
)
def test_normalize(value, expected):
    assert normalize_phone_number(value) == expected
    assert len(normalize_phone_number(value)) == 12


@pytest.mark.parametrize(
    "value",
    [
        None,
        "",
        "12345",
        "0812345678",
        "071234567",
        "07123456789",
        "255712345678",
        "0712abc678",
    ],
)
def test_invalid(value):
    assert normalize_phone_number(value) is None
    assert not is_valid_phone_number(value)
