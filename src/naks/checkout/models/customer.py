"""Customer models."""
import re
from enum import Enum
from typing import Optional

from attrs import frozen

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


class DeliveryMethod(str, Enum):
    """How tickets are delivered."""

    email = "email"
    download = "download"


@frozen(kw_only=True)
class CustomerIdentity:
    """The identity of the person checking out."""

    uid: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    phone_number: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        """Whether the customer is signed in."""
        return self.uid is not None


GUEST = CustomerIdentity()
"""An unauthenticated customer."""


def validate_customer_info(
    name: Optional[str], email: Optional[str]
) -> dict[str, str]:
    """Validate guest customer details.

    Returns:
        A mapping of field names to error messages, empty if valid.
    """
    errors = {}
    if not name or not name.strip():
        errors["customer_name"] = "Name is required"

    if not email or not email.strip():
        errors["customer_email"] = "Email is required"
    elif not EMAIL_PATTERN.match(email.strip()):
        errors["customer_email"] = "Enter a valid email address"

    return errors
