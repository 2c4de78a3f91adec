from datetime import timedelta

import pytest
from jwt import InvalidTokenError
from naks.checkout.auth import AccessToken, User, get_customer_identity
from naks.checkout.models.customer import GUEST
from naks.checkout.util import get_now


def make_token(**kwargs) -> AccessToken:
    now = get_now(seconds_only=True)
    props = {
        "sub": "user-1",
        "iat": now,
        "exp": now + timedelta(seconds=30),
        "email": "jane@example.com",
        "name": "Jane Doe",
        "phone_number": "0712345678",
        **kwargs,
    }
    return AccessToken(**props)


def test_token_encode_decode():
    token = make_token()

    encoded = token.encode(key="test-key")
    assert isinstance(encoded, str)

    decoded = AccessToken.decode(encoded, key="test-key")
    assert decoded == token


def test_token_different_key_error():
    encoded = make_token().encode(key="test-key")
    with pytest.raises(InvalidTokenError):
        AccessToken.decode(encoded, key="wrong-key")


def test_token_expired():
    now = get_now(seconds_only=True)
    encoded = make_token(exp=now - timedelta(seconds=60)).encode(key="test-key")
    with pytest.raises(InvalidTokenError):
        AccessToken.decode(encoded, key="test-key")


@pytest.mark.parametrize(
    "scope, expected",
    [
        ("", False),
        ("tickets", False),
        ("tickets admin", True),
    ],
)
def test_user_is_admin(scope, expected):
    user = User(make_token(scope=scope))
    assert user.id == "user-1"
    assert user.is_admin is expected


def test_get_customer_identity():
    identity = get_customer_identity(User(make_token()))

    assert identity.is_authenticated
    assert identity.uid == "user-1"
    assert identity.email == "jane@example.com"
    assert identity.display_name == "Jane Doe"
    assert identity.phone_number == "0712345678"


def test_get_customer_identity_guest():
    assert get_customer_identity(None) == GUEST
    assert not GUEST.is_authenticated
