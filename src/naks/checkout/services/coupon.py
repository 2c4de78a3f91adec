"""Coupon service."""
from collections.abc import Sequence
from typing import Optional

from naks.checkout.entities.coupon import CouponEntity
from naks.checkout.models.coupon import Coupon
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession


class CouponService:
    """Coupon service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_coupon_entity(
        self, code: str, *, lock: bool = False
    ) -> Optional[CouponEntity]:
        """Get a coupon entity by code.

        Args:
            code: The code, in any case.
            lock: Whether to lock the row.
        """
        return await self.db.get(
            CouponEntity, code.strip().upper(), with_for_update=lock
        )

    async def get_coupon(
        self, code: str, event_id: Optional[str] = None
    ) -> Optional[Coupon]:
        """Get an active coupon matching a code and event."""
        q = select(CouponEntity).where(
            CouponEntity.code == code.strip().upper(),
            CouponEntity.active.is_(True),
            or_(CouponEntity.event_id.is_(None), CouponEntity.event_id == event_id),
        )
        res = await self.db.execute(q)
        entity = res.scalar_one_or_none()
        return entity.get_coupon() if entity is not None else None

    async def create_coupon(self, coupon: Coupon) -> Optional[CouponEntity]:
        """Create a coupon.

        Returns:
            The new :class:`CouponEntity`, or None if the code is taken.
        """
        if await self.get_coupon_entity(coupon.code) is not None:
            return None

        entity = CouponEntity.create(coupon)
        self.db.add(entity)
        await self.db.flush()
        return entity

    async def list_coupons(
        self, *, event_id: Optional[str] = None, page: int = 0, per_page: int = 50
    ) -> Sequence[CouponEntity]:
        """List coupons."""
        q = select(CouponEntity)

        if event_id:
            q = q.where(CouponEntity.event_id == event_id)

        q = (
            q.order_by(CouponEntity.date_created.desc())
            .offset(page * per_page)
            .limit(per_page)
        )

        res = await self.db.execute(q)
        return res.scalars().all()

    async def record_use(self, code: str) -> bool:
        """Increment the use count of a coupon.

        Returns:
            Whether the coupon is stored in the database.
        """
        entity = await self.get_coupon_entity(code, lock=True)
        if entity is None:
            return False
        entity.times_used += 1
        return True
