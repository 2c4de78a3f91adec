"""Coupon views."""
from decimal import Decimal
from typing import Optional

from attrs import frozen
from blacksheep import HTTPException, auth
from naks.checkout.app import app
from naks.checkout.auth import RequireAdmin, User
from naks.checkout.database import transaction
from naks.checkout.docs import docs_helper
from naks.checkout.models.coupon import Coupon
from naks.checkout.models.event import EventConfig
from naks.checkout.services.checkout import CheckoutService
from naks.checkout.services.coupon import CouponService
from naks.checkout.views.event import get_visible_event
from naks.checkout.views.parameters import AttrsBody, Page, PerPage
from naks.checkout.views.responses import CouponResponse, CouponResultResponse


@frozen(kw_only=True)
class ValidateCouponRequest:
    """Request body to check a coupon code."""

    code: Optional[str] = None
    event_id: str
    subtotal: Decimal


@app.router.post("/coupons/validate")
@docs_helper(
    response_type=CouponResultResponse,
    response_summary="Whether the coupon applies, and the discount",
    tags=["Coupon"],
)
async def validate_coupon(
    body: AttrsBody[ValidateCouponRequest],
    checkout_service: CheckoutService,
    event_config: EventConfig,
    user: User,
) -> CouponResultResponse:
    """Check a coupon code against a subtotal."""
    event = get_visible_event(event_config, body.value.event_id, user)
    resolver = checkout_service.get_coupon_resolver()
    result = await resolver.apply(body.value.code, body.value.subtotal, event.id)
    return CouponResultResponse.create(result)


@auth(RequireAdmin)
@app.router.get("/coupons")
@docs_helper(
    response_type=list[CouponResponse],
    response_summary="The stored coupons",
    tags=["Coupon"],
)
async def list_coupons(
    coupon_service: CouponService,
    page: Page,
    per_page: PerPage,
    event_id: Optional[str] = None,
) -> list[CouponResponse]:
    """List stored coupons."""
    results = await coupon_service.list_coupons(
        event_id=event_id, page=page.value, per_page=per_page.value
    )
    return [CouponResponse.create(c) for c in results]


@auth(RequireAdmin)
@app.router.post("/coupons")
@docs_helper(
    response_type=CouponResponse,
    response_summary="The created coupon",
    tags=["Coupon"],
)
@transaction
async def create_coupon(
    body: AttrsBody[Coupon],
    coupon_service: CouponService,
) -> CouponResponse:
    """Create a coupon."""
    entity = await coupon_service.create_coupon(body.value)
    if entity is None:
        raise HTTPException(409, "Coupon code already exists")
    return CouponResponse.create(entity)
