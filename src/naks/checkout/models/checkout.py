"""Checkout data models."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from attrs import frozen
from naks.checkout.models.customer import DeliveryMethod
from naks.checkout.models.event import EventSnapshot
from naks.checkout.models.order import Order
from naks.checkout.models.payment import PaymentStatus
from naks.checkout.money import ZERO, clamp_amount


class CheckoutStep(str, Enum):
    """Checkout steps, in order."""

    review_order = "review_order"
    coupon = "coupon"
    payment_details = "payment_details"
    confirmation = "confirmation"


STEP_ORDER = tuple(CheckoutStep)


class PaymentMethod(str, Enum):
    """Payment methods."""

    mpesa_stk = "mpesa_stk"


class ConfirmationOutcome(str, Enum):
    """The outcome shown on the confirmation step."""

    success = "success"
    failed = "failed"
    pending_unknown = "pending_unknown"


class NoticeTone(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class NoticeAction(str, Enum):
    """The recovery action offered with a notice."""

    retry = "retry"
    edit_field = "edit_field"
    back_to_event = "back_to_event"
    check_later = "check_later"
    view_tickets = "view_tickets"


@frozen
class Notice:
    """A user-visible message."""

    tone: NoticeTone
    message: str
    action: Optional[NoticeAction] = None


@frozen(kw_only=True)
class CheckoutData:
    """The state of one checkout session.

    Only :class:`naks.checkout.orchestrator.CheckoutOrchestrator` creates new
    instances.
    """

    event: EventSnapshot
    """A snapshot of the event."""

    order: Order
    """The selected tickets."""

    user_id: Optional[str] = None
    """The authenticated customer's ID."""

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    ticket_delivery_method: DeliveryMethod = DeliveryMethod.email

    coupon_code: Optional[str] = None
    """The applied coupon code."""

    coupon_discount_amount: Decimal = ZERO
    """The discount, zero without a coupon."""

    selected_payment_method: PaymentMethod = PaymentMethod.mpesa_stk
    mpesa_phone_number: Optional[str] = None
    """The phone number, as entered."""

    payment_status: PaymentStatus = PaymentStatus.idle

    initiating_since: Optional[datetime] = None
    """When the in-flight initiation request started."""

    transaction_id: Optional[str] = None
    """The payment record ID, once initiation succeeded."""

    provider_request_id: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    payment_error: Optional[str] = None
    """The reason initiation or payment failed."""

    initiated_at: Optional[datetime] = None
    """When payment initiation succeeded."""

    status_timed_out: bool = False
    """Whether the payment status stayed unknown past the timeout."""

    step: CheckoutStep = CheckoutStep.review_order

    notice: Optional[Notice] = None
    """The latest notice."""

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def calculated_total_price(self) -> Decimal:
        """The order subtotal."""
        return self.order.subtotal()

    @property
    def final_amount_to_pay(self) -> Decimal:
        """The subtotal less the discount, never negative."""
        return clamp_amount(self.calculated_total_price - self.coupon_discount_amount)

    @property
    def is_processing_payment(self) -> bool:
        """Whether an initiation request is in flight."""
        return self.payment_status == PaymentStatus.initiating

    @property
    def payment_started(self) -> bool:
        """Whether a payment prompt has been sent to the payer."""
        return self.transaction_id is not None

    @property
    def can_pay(self) -> bool:
        """Whether payment may be initiated."""
        return self.step == CheckoutStep.payment_details and self.payment_status in (
            PaymentStatus.idle,
            PaymentStatus.failed,
        )

    @property
    def can_abandon(self) -> bool:
        """Whether the checkout may be abandoned."""
        return (
            self.step != CheckoutStep.confirmation
            and not self.payment_started
            and not self.is_processing_payment
        )

    @property
    def outcome(self) -> Optional[ConfirmationOutcome]:
        """The confirmation outcome, if it has been determined."""
        if self.step != CheckoutStep.confirmation:
            return None
        elif self.payment_status == PaymentStatus.completed:
            return ConfirmationOutcome.success
        elif self.payment_status == PaymentStatus.failed:
            return ConfirmationOutcome.failed
        elif self.status_timed_out:
            return ConfirmationOutcome.pending_unknown
        else:
            return None
