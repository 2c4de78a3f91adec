"""Coupon models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from attrs import field, frozen
from naks.checkout.money import ZERO


class DiscountType(str, Enum):
    """The way a coupon discount is calculated."""

    percentage = "percentage"
    fixed = "fixed"


def _normalize_code(v: str) -> str:
    return v.strip().upper()


def _validate_value(a, i, v):
    if v <= 0:
        raise ValueError("Discount value must be positive")


@frozen(kw_only=True)
class Coupon:
    """A coupon rule."""

    code: str = field(converter=_normalize_code)
    """The coupon code, matched case-insensitively."""

    discount_type: DiscountType
    """The discount type."""

    discount_value: Decimal = field(validator=_validate_value)
    """The percent or fixed amount."""

    minimum_order_amount: Optional[Decimal] = None
    """The minimum subtotal the coupon applies to."""

    valid_from: Optional[datetime] = None
    """When the coupon starts being valid."""

    expiry: Optional[datetime] = None
    """When the coupon stops being valid."""

    event_id: Optional[str] = None
    """Restrict the coupon to one event."""

    def matches(self, code: str, event_id: Optional[str] = None) -> bool:
        """Whether this coupon matches a code for an event."""
        if _normalize_code(code) != self.code:
            return False
        return self.event_id is None or self.event_id == event_id

    def is_started(self, now: datetime) -> bool:
        """Whether the coupon's validity period has started."""
        return self.valid_from is None or now >= self.valid_from

    def is_expired(self, now: datetime) -> bool:
        """Whether the coupon has expired."""
        return self.expiry is not None and now >= self.expiry

    def get_discount(self, subtotal: Decimal) -> Decimal:
        """Get the discount for a subtotal.

        The discount never exceeds the subtotal.
        """
        if subtotal <= ZERO:
            return ZERO

        if self.discount_type == DiscountType.percentage:
            discount = subtotal * self.discount_value / 100
        else:
            discount = self.discount_value

        return min(discount, subtotal)


@frozen
class CouponResult:
    """The result of resolving a coupon code."""

    valid: bool
    """Whether the code may be applied."""

    discount_amount: Decimal = ZERO
    """The discount, zero unless valid."""

    reason: Optional[str] = None
    """A human-readable reason the code was rejected."""

    coupon: Optional[Coupon] = None
    """The matched coupon."""

    @classmethod
    def rejected(cls, reason: str) -> "CouponResult":
        """Create a rejected result."""
        return cls(False, ZERO, reason)
