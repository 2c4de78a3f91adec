"""Coupon resolution."""
from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from loguru import logger
from naks.checkout.models.coupon import Coupon, CouponResult
from naks.checkout.money import format_amount
from naks.checkout.util import get_now


class CouponSource(Protocol):
    """A source of coupon rules."""

    async def get_coupon(
        self, code: str, event_id: Optional[str] = None
    ) -> Optional[Coupon]:
        """Get the coupon matching a code, if any."""
        ...


class StaticCouponSource:
    """Coupon rules from configuration."""

    def __init__(self, coupons: Sequence[Coupon]):
        self.coupons = tuple(coupons)

    async def get_coupon(
        self, code: str, event_id: Optional[str] = None
    ) -> Optional[Coupon]:
        return next((c for c in self.coupons if c.matches(code, event_id)), None)


class CouponResolver:
    """Validates coupon codes and calculates discounts.

    Sources are checked in order and the first match wins.
    """

    def __init__(
        self,
        sources: Sequence[CouponSource],
        get_time: Callable[[], datetime] = get_now,
    ):
        self.sources = tuple(sources)
        self.get_time = get_time

    async def get_coupon(
        self, code: str, event_id: Optional[str] = None
    ) -> Optional[Coupon]:
        """Look up a coupon in each source."""
        for source in self.sources:
            coupon = await source.get_coupon(code, event_id)
            if coupon is not None:
                return coupon
        return None

    async def apply(
        self,
        code: Optional[str],
        subtotal: Decimal,
        event_id: Optional[str] = None,
    ) -> CouponResult:
        """Resolve a coupon code against the current subtotal.

        Checks, in order, that the code is not empty, that it matches a rule, the
        minimum order amount and the validity period.

        Returns:
            A :class:`CouponResult`. Rejections include a reason.
        """
        if not code or not code.strip():
            return CouponResult.rejected("Enter a coupon code")

        try:
            coupon = await self.get_coupon(code, event_id)
        except Exception:
            logger.opt(exception=True).error(f"Could not look up coupon {code!r}")
            return CouponResult.rejected("The coupon could not be checked, try again")

        if coupon is None:
            return CouponResult.rejected("Invalid coupon code")

        if (
            coupon.minimum_order_amount is not None
            and subtotal < coupon.minimum_order_amount
        ):
            return CouponResult.rejected(
                f"This coupon needs an order of at least "
                f"{format_amount(coupon.minimum_order_amount)}"
            )

        now = self.get_time()
        if not coupon.is_started(now):
            return CouponResult.rejected("This coupon is not valid yet")

        if coupon.is_expired(now):
            return CouponResult.rejected("This coupon has expired")

        return CouponResult(True, coupon.get_discount(subtotal), coupon=coupon)
