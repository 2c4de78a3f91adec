"""Response types."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime, time  # noqa
from decimal import Decimal
from typing import Optional
from uuid import UUID

from attrs import frozen
from cattrs import BaseValidationError
from naks.checkout.entities.checkout import CheckoutEntity, CheckoutState
from naks.checkout.entities.coupon import CouponEntity
from naks.checkout.entities.payment import PaymentEntity
from naks.checkout.entities.ticket import TicketEntity
from naks.checkout.models.checkout import (
    CheckoutData,
    CheckoutStep,
    ConfirmationOutcome,
    Notice,
    PaymentMethod,
)
from naks.checkout.models.coupon import CouponResult, DiscountType
from naks.checkout.models.customer import DeliveryMethod
from naks.checkout.models.event import Event, EventSnapshot, TicketType
from naks.checkout.models.order import LineItem
from naks.checkout.models.payment import PaymentLogEntry, PaymentStatus
from naks.checkout.money import format_amount, round_amount
from typing_extensions import Self


@frozen(kw_only=True)
class ExceptionDetails:
    """Exception details object."""

    exception: Optional[str] = None
    detail: Optional[str] = None
    children: Optional[list[ExceptionDetails]] = None

    @classmethod
    def _format_validation_error(cls, exc: BaseValidationError) -> ExceptionDetails:
        return cls(
            exception=type(exc).__qualname__,
            detail=exc.message,
            children=(
                [cls._format_exception(sub) for sub in exc.exceptions]
                if len(exc.exceptions) > 0
                else None
            ),
        )

    @classmethod
    def _format_exception(cls, exc: Exception) -> ExceptionDetails:
        if isinstance(exc, BaseValidationError):
            return cls._format_validation_error(exc)
        else:
            if len(exc.args) > 0 and isinstance(exc.args[0], str):
                detail = exc.args[0]
            else:
                detail = None
            type_ = type(exc).__qualname__
            return cls(exception=type_, detail=detail)

    @classmethod
    def create(cls, exc: Exception) -> ExceptionDetails:
        return cls._format_exception(exc)


class BodyValidationError(Exception):
    """Raised for validation errors."""

    def __init__(self, exc: Exception):
        super().__init__(422, "Unprocessable entity")
        self.exc = exc


@frozen
class FieldErrorsResponse:
    """Field errors that prevent an action."""

    errors: Mapping[str, str]
    notice: Optional[Notice] = None


@frozen
class TicketTypeResponse:
    """A ticket type."""

    id: str
    name: str
    price: Decimal
    available: Optional[int] = None
    max_per_order: Optional[int] = None

    @classmethod
    def create(cls, ticket_type: TicketType) -> Self:
        return cls(
            id=ticket_type.id,
            name=ticket_type.name,
            price=ticket_type.price,
            available=ticket_type.available,
            max_per_order=ticket_type.max_per_order,
        )


@frozen
class EventResponse:
    """An event."""

    id: str
    name: str
    description: Optional[str]
    date: date
    start_time: Optional[time]
    location: Optional[str]
    open: bool
    ticket_types: Sequence[TicketTypeResponse] = ()

    @classmethod
    def create(cls, event: Event) -> Self:
        return cls(
            id=event.id,
            name=event.name,
            description=event.description,
            date=event.date,
            start_time=event.start_time,
            location=event.location,
            open=event.open,
            ticket_types=tuple(
                TicketTypeResponse.create(t) for t in event.ticket_types
            ),
        )


@frozen
class LineItemResponse:
    """A line item."""

    ticket_type_id: str
    name: str
    unit_price: Decimal
    quantity: int
    total_price: Decimal

    @classmethod
    def create(cls, line_item: LineItem) -> Self:
        return cls(
            ticket_type_id=line_item.ticket_type_id,
            name=line_item.name,
            unit_price=line_item.unit_price,
            quantity=line_item.quantity,
            total_price=round_amount(line_item.total_price),
        )


@frozen(kw_only=True)
class CheckoutResponse:
    """A checkout session."""

    id: UUID
    state: CheckoutState
    step: CheckoutStep
    event: EventSnapshot
    line_items: Sequence[LineItemResponse]
    is_authenticated: bool
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    ticket_delivery_method: DeliveryMethod
    coupon_code: Optional[str] = None
    coupon_discount_amount: Decimal
    calculated_total_price: Decimal
    final_amount_to_pay: Decimal
    display_amount: str
    """The amount to pay, formatted for display."""

    selected_payment_method: PaymentMethod
    mpesa_phone_number: Optional[str] = None
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    payment_error: Optional[str] = None
    outcome: Optional[ConfirmationOutcome] = None
    can_pay: bool
    can_abandon: bool
    notice: Optional[Notice] = None
    errors: Optional[Mapping[str, str]] = None
    """Field errors from the latest change."""

    @classmethod
    def create(
        cls,
        entity: CheckoutEntity,
        data: CheckoutData,
        currency: str,
        errors: Optional[Mapping[str, str]] = None,
    ) -> Self:
        return cls(
            id=entity.id,
            state=entity.state,
            step=data.step,
            event=data.event,
            line_items=tuple(
                LineItemResponse.create(li) for li in data.order.active_items
            ),
            is_authenticated=data.is_authenticated,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            ticket_delivery_method=data.ticket_delivery_method,
            coupon_code=data.coupon_code,
            coupon_discount_amount=round_amount(data.coupon_discount_amount),
            calculated_total_price=round_amount(data.calculated_total_price),
            final_amount_to_pay=round_amount(data.final_amount_to_pay),
            display_amount=format_amount(data.final_amount_to_pay, currency),
            selected_payment_method=data.selected_payment_method,
            mpesa_phone_number=data.mpesa_phone_number,
            payment_status=data.payment_status,
            payment_id=data.transaction_id,
            mpesa_receipt_number=data.mpesa_receipt_number,
            payment_error=data.payment_error,
            outcome=data.outcome,
            can_pay=entity.is_open and data.can_pay,
            can_abandon=entity.is_open and data.can_abandon,
            notice=data.notice,
            errors=errors or None,
        )


@frozen
class CouponResultResponse:
    """The result of checking a coupon code."""

    valid: bool
    code: Optional[str] = None
    discount_amount: Decimal = Decimal(0)
    reason: Optional[str] = None

    @classmethod
    def create(cls, result: CouponResult) -> Self:
        return cls(
            valid=result.valid,
            code=result.coupon.code if result.coupon is not None else None,
            discount_amount=round_amount(result.discount_amount),
            reason=result.reason,
        )


@frozen
class CouponResponse:
    """A stored coupon."""

    code: str
    event_id: Optional[str]
    discount_type: DiscountType
    discount_value: Decimal
    minimum_order_amount: Optional[Decimal]
    valid_from: Optional[datetime]
    expiry: Optional[datetime]
    active: bool
    times_used: int

    @classmethod
    def create(cls, entity: CouponEntity) -> Self:
        return cls(
            code=entity.code,
            event_id=entity.event_id,
            discount_type=DiscountType(entity.discount_type),
            discount_value=entity.discount_value,
            minimum_order_amount=entity.minimum_order_amount,
            valid_from=entity.valid_from,
            expiry=entity.expiry,
            active=entity.active,
            times_used=entity.times_used,
        )


@frozen
class PaymentResponse:
    """A payment record."""

    id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    account_reference: str
    mpesa_receipt_number: Optional[str]
    error_reason: Optional[str]
    log: Sequence[PaymentLogEntry]

    @classmethod
    def create(cls, entity: PaymentEntity) -> Self:
        record = entity.get_record()
        return cls(
            id=entity.id,
            status=entity.status,
            amount=entity.amount,
            currency=entity.currency,
            account_reference=entity.account_reference,
            mpesa_receipt_number=record.mpesa_receipt_number,
            error_reason=record.error_reason,
            log=record.log,
        )


@frozen
class TicketResponse:
    """An issued ticket."""

    code: str
    ticket_type_id: str
    ticket_type_name: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    delivery_method: DeliveryMethod
    date_created: datetime

    @classmethod
    def create(cls, entity: TicketEntity) -> Self:
        return cls(
            code=entity.code,
            ticket_type_id=entity.ticket_type_id,
            ticket_type_name=entity.ticket_type_name,
            customer_name=entity.customer_name,
            customer_email=entity.customer_email,
            delivery_method=DeliveryMethod(entity.delivery_method),
            date_created=entity.date_created,
        )
