"""Coupon entities."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from naks.checkout.entities.base import CODE_LENGTH, Base, Created
from naks.checkout.models.coupon import Coupon, DiscountType
from naks.checkout.util import get_now
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

COUPON_CODE_MAX_LENGTH = 32
"""Max length of a coupon code."""


class CouponEntity(Base):
    """Coupon entity."""

    __tablename__ = "coupon"

    code: Mapped[str] = mapped_column(String(COUPON_CODE_MAX_LENGTH), primary_key=True)
    """The coupon code, upper-case."""

    event_id: Mapped[Optional[str]] = mapped_column(index=True)
    """The event the coupon is limited to."""

    discount_type: Mapped[DiscountType] = mapped_column(
        String(CODE_LENGTH)
    )
    """The discount type."""

    discount_value: Mapped[Decimal]
    """The percent or fixed amount."""

    minimum_order_amount: Mapped[Optional[Decimal]]
    """The minimum subtotal."""

    valid_from: Mapped[Optional[datetime]]
    """When the coupon starts being valid."""

    expiry: Mapped[Optional[datetime]]
    """When the coupon expires."""

    active: Mapped[bool] = mapped_column(default=True)
    """Whether the coupon may be used."""

    times_used: Mapped[int] = mapped_column(default=0)
    """How many paid orders used the coupon."""

    date_created: Mapped[Created]
    """The date the coupon was created."""

    def __repr__(self):
        return f"<Coupon code={self.code}>"

    @classmethod
    def create(cls, coupon: Coupon) -> CouponEntity:
        """Create an entity from a :class:`Coupon`."""
        return cls(
            code=coupon.code,
            event_id=coupon.event_id,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            minimum_order_amount=coupon.minimum_order_amount,
            valid_from=coupon.valid_from,
            expiry=coupon.expiry,
            active=True,
            times_used=0,
            date_created=get_now(),
        )

    def get_coupon(self) -> Coupon:
        """Get the :class:`Coupon` model."""
        return Coupon(
            code=self.code,
            discount_type=DiscountType(self.discount_type),
            discount_value=self.discount_value,
            minimum_order_amount=self.minimum_order_amount,
            valid_from=self.valid_from,
            expiry=self.expiry,
            event_id=self.event_id,
        )
