from datetime import date
from decimal import Decimal

import pytest
from attrs import evolve
from naks.checkout.models.checkout import (
    CheckoutData,
    CheckoutStep,
    ConfirmationOutcome,
)
from naks.checkout.models.event import EventSnapshot, TicketType
from naks.checkout.models.order import Order
from naks.checkout.models.payment import PaymentStatus
from naks.checkout.serialization import get_converter

ga = TicketType(id="ga", name="GA", price=Decimal("1500"))
vip = TicketType(id="vip", name="VIP", price=Decimal("3000"))


@pytest.fixture
def data() -> CheckoutData:
    order = Order(event_id="event").add_or_increment(ga, 2).add_or_increment(vip, 1)
    return CheckoutData(
        event=EventSnapshot(id="event", name="Event", date=date(2026, 12, 12)),
        order=order,
    )


def test_totals(data: CheckoutData):
    assert data.calculated_total_price == Decimal("6000")
    assert data.final_amount_to_pay == Decimal("6000")

    discounted = evolve(data, coupon_discount_amount=Decimal("1200"))
    assert discounted.final_amount_to_pay == Decimal("4800")


@pytest.mark.parametrize(
    "discount", [Decimal("6000"), Decimal("6000.01"), Decimal("100000")]
)
def test_final_amount_never_negative(data: CheckoutData, discount):
    assert evolve(data, coupon_discount_amount=discount).final_amount_to_pay == 0


def test_can_pay(data: CheckoutData):
    assert not data.can_pay

    data = evolve(data, step=CheckoutStep.payment_details)
    assert data.can_pay
    assert evolve(data, payment_status=PaymentStatus.failed).can_pay
    assert not evolve(data, payment_status=PaymentStatus.initiating).can_pay


def test_can_abandon(data: CheckoutData):
    assert data.can_abandon
    assert not evolve(data, payment_status=PaymentStatus.initiating).can_abandon
    assert not evolve(data, transaction_id="p1").can_abandon
    assert not evolve(data, step=CheckoutStep.confirmation).can_abandon


@pytest.mark.parametrize(
    "status, timed_out, expected",
    [
        (PaymentStatus.pending, False, None),
        (PaymentStatus.processing, False, None),
        (PaymentStatus.pending, True, ConfirmationOutcome.pending_unknown),
        (PaymentStatus.completed, False, ConfirmationOutcome.success),
        (PaymentStatus.failed, False, ConfirmationOutcome.failed),
        (PaymentStatus.completed, True, ConfirmationOutcome.success),
    ],
)
def test_outcome(data: CheckoutData, status, timed_out, expected):
    data = evolve(
        data,
        step=CheckoutStep.confirmation,
        payment_status=status,
        status_timed_out=timed_out,
    )
    assert data.outcome == expected


def test_no_outcome_before_confirmation(data: CheckoutData):
    assert evolve(data, payment_status=PaymentStatus.failed).outcome is None


def test_serialization(data: CheckoutData):
    data = evolve(data, coupon_code="NAKSYETU20", coupon_discount_amount=Decimal("1.5"))
    converter = get_converter()

    as_dict = converter.unstructure(data)
    assert as_dict["coupon_discount_amount"] == "1.5"
    assert as_dict["order"]["line_items"][0]["unit_price"] == "1500"
    assert "transaction_id" not in as_dict

    assert converter.structure(as_dict, CheckoutData) == data
