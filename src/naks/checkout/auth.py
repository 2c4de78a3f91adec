"""Auth module.

Tokens are issued by the identity provider. This service only verifies them.
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

import jwt
from attrs import frozen
from blacksheep import Request
from blacksheep.exceptions import Forbidden
from blacksheep.server.bindings import Binder, BoundValue
from cattrs import BaseValidationError
from cattrs.preconf.orjson import make_converter
from guardpost import Identity, Policy
from guardpost.asynchronous.authentication import AuthenticationHandler
from guardpost.authorization import AuthorizationContext
from guardpost.synchronous.authorization import Requirement
from jwt import InvalidTokenError
from naks.checkout.models.config import Config
from naks.checkout.models.customer import GUEST, CustomerIdentity
from naks.checkout.serialization.common import structure_datetime
from typing_extensions import Self

ALGORITHM = "HS256"

ADMIN_SCOPE = "admin"

converter = make_converter()
"""A converter for tokens."""

converter.register_structure_hook(datetime, lambda v, t: structure_datetime(v))
converter.register_unstructure_hook(datetime, lambda v: int(v.timestamp()))


@frozen(kw_only=True)
class AccessToken:
    """Identity provider access token."""

    sub: str
    exp: datetime
    iat: Optional[datetime] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None
    scope: str = ""
    """Space-separated scopes."""

    @classmethod
    def decode(cls, token: str, *, key: str) -> Self:
        """Decode/verify/validate a token.

        Raises:
            jwt.InvalidTokenError: If the token is not valid.
        """
        res = jwt.decode(token, key=key, algorithms=[ALGORITHM])
        try:
            return converter.structure(res, cls)
        except BaseValidationError as e:
            raise InvalidTokenError(e)

    def encode(self, *, key: str) -> str:
        """Encode the token."""
        as_dict = converter.unstructure(self)
        as_dict = {k: v for k, v in as_dict.items() if v is not None}
        return jwt.encode(as_dict, key=key, algorithm=ALGORITHM)


class User(Identity):
    """An authenticated customer."""

    def __init__(self, token: AccessToken):
        super().__init__(
            {
                "sub": token.sub,
                "email": token.email,
                "name": token.name,
                "phone_number": token.phone_number,
                "scope": frozenset(token.scope.split()),
            },
            "Bearer",
        )

    @property
    def id(self) -> str:
        """The user ID."""
        return self.claims["sub"]

    @property
    def email(self) -> Optional[str]:
        return self.claims["email"]

    @property
    def name(self) -> Optional[str]:
        return self.claims["name"]

    @property
    def phone_number(self) -> Optional[str]:
        return self.claims["phone_number"]

    @property
    def scope(self) -> frozenset[str]:
        """The user's allowed scopes."""
        return self.claims["scope"]

    @property
    def is_admin(self) -> bool:
        """Whether the user has the "admin" scope."""
        return ADMIN_SCOPE in self.scope


def get_customer_identity(user: Optional[User]) -> CustomerIdentity:
    """Get the :class:`CustomerIdentity` of the request user."""
    if user is None:
        return GUEST

    return CustomerIdentity(
        uid=user.id,
        email=user.email,
        display_name=user.name,
        phone_number=user.phone_number,
    )


class TokenAuthHandler(AuthenticationHandler):
    """Handler to allow the web server to use token auth.

    Requests without a valid token are handled as guests.
    """

    def __init__(self, config: Config):
        self.config = config

    def decode_token(self, value: bytes) -> Optional[AccessToken]:
        try:
            token = AccessToken.decode(value.decode(), key=self.config.auth.signing_key)
        except (InvalidTokenError, UnicodeDecodeError):
            return None

        return token

    async def authenticate(self, context: Request) -> Optional[Identity]:
        auth_header = context.headers.get_first(b"Authorization")
        if not auth_header:
            context.identity = None
            return None

        typ, _, value = auth_header.partition(b" ")
        if typ.lower() != b"bearer":
            context.identity = None
            return None

        token = self.decode_token(value)
        if token:
            user = User(token)
            context.identity = user
            return user
        else:
            context.identity = None
            return None


class ScopeRequirement(Requirement):
    """Require a scope."""

    def __init__(self, scope: str):
        self.scope = scope

    def handle(self, context: AuthorizationContext):
        identity = context.identity

        if not identity:
            context.fail("Missing identity")
            return

        if not isinstance(identity, User) or self.scope not in identity.scope:
            context.fail(f"Missing scope {self.scope}")
            # the authorization framework would return 401 instead of 403
            raise Forbidden

        context.succeed(self)


RequireAdmin = "require_admin"

require_admin = Policy(RequireAdmin, ScopeRequirement(ADMIN_SCOPE))


class RequestUser(BoundValue[User]):
    """Bound value for the app specific :class:`User` class."""

    pass


class UserBinder(Binder):
    """User binder.

    Even though not explicitly used, this is required to support implicitly binding a
    :class:`Identity` subclass.
    """

    handle = RequestUser
    type_alias = User

    def __init__(
        self,
        expected_type: Any = User,
        name: str = "",
        implicit: bool = True,
        required: bool = False,
        converter: Optional[Callable] = None,
    ):
        super().__init__(expected_type, name, implicit, required, converter)

    async def get_value(self, request: Request) -> Optional[User]:
        return getattr(request, "identity", None)
