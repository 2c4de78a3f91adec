from datetime import date
from decimal import Decimal
from unittest.mock import create_autospec

import pytest
from naks.checkout.models.config import Config
from naks.checkout.models.customer import GUEST, CustomerIdentity
from naks.checkout.models.event import Event, EventConfig, TicketType
from naks.checkout.services.checkout import CheckoutService, apply_availability
from naks.checkout.services.coupon import CouponService
from naks.checkout.services.payment import PaymentService
from naks.checkout.services.ticket import TicketService
from naks.checkout.watcher import DatabasePaymentRecordStore
from sqlalchemy.ext.asyncio import AsyncSession

event = Event(
    id="sauti-sol-live",
    name="Sauti Sol Live",
    date=date(2026, 12, 12),
    open=True,
    visible=True,
    ticket_types=(
        TicketType(id="regular", name="Regular", price=Decimal("1500"), available=5),
        TicketType(id="vip", name="VIP", price=Decimal("5000")),
    ),
)


def test_apply_availability():
    result = apply_availability(event, {"regular": 3, "vip": 10})

    assert result.get_ticket_type("regular").available == 2
    assert result.get_ticket_type("vip").available is None


def test_apply_availability_sold_out():
    result = apply_availability(event, {"regular": 7})
    assert result.get_ticket_type("regular").available == 0


@pytest.fixture
def service(db: AsyncSession, example_config: Config):
    coupon_service = CouponService(db)
    ticket_service = TicketService(db, EventConfig([event]))
    return CheckoutService(
        db,
        example_config,
        create_autospec(DatabasePaymentRecordStore),
        coupon_service,
        create_autospec(PaymentService),
        ticket_service,
    )


@pytest.mark.asyncio
async def test_create_checkout(service: CheckoutService, db: AsyncSession):
    entity, data = await service.create_checkout(event, GUEST)
    await db.commit()

    res = await service.get_checkout(entity.id)
    assert res.is_open
    assert res.event_id == "sauti-sol-live"
    assert res.get_data() == data


@pytest.mark.asyncio
async def test_create_checkout_authenticated(service: CheckoutService):
    customer = CustomerIdentity(uid="user-1", display_name="Jane Doe")
    entity, data = await service.create_checkout(event, customer)

    assert entity.user_id == "user-1"
    assert data.customer_name == "Jane Doe"


@pytest.mark.asyncio
async def test_get_available_event_none_issued(service: CheckoutService):
    result = await service.get_available_event(event)
    assert result.get_ticket_type("regular").available == 5


@pytest.mark.asyncio
async def test_abandon_checkout(service: CheckoutService):
    entity, _ = await service.create_checkout(event, GUEST)

    assert await service.abandon_checkout(entity)
    assert not entity.is_open
    assert not await service.abandon_checkout(entity)
