"""Checkout orchestration.

:class:`CheckoutOrchestrator` owns a checkout session's :class:`CheckoutData`. Every
change goes through one of its methods, which build a new instance and pass it to
the ``on_change`` callback.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Optional

from attrs import evolve
from loguru import logger
from naks.checkout.coupons import CouponResolver
from naks.checkout.log import AuditLogType, audit_log
from naks.checkout.models.checkout import (
    STEP_ORDER,
    CheckoutData,
    CheckoutStep,
    ConfirmationOutcome,
    Notice,
    NoticeAction,
    NoticeTone,
    PaymentMethod,
)
from naks.checkout.models.config import PaymentConfig
from naks.checkout.models.coupon import CouponResult
from naks.checkout.models.customer import (
    CustomerIdentity,
    DeliveryMethod,
    validate_customer_info,
)
from naks.checkout.models.event import Event, EventSnapshot
from naks.checkout.models.order import CapacityExceeded, Order
from naks.checkout.models.payment import OrderLine, PaymentRecord, PaymentStatus
from naks.checkout.money import ZERO
from naks.checkout.payment.initiator import (
    INVALID_AMOUNT_MESSAGE,
    INVALID_PHONE_MESSAGE,
    PaymentInitiator,
    PaymentMetadata,
    build_account_reference,
)
from naks.checkout.payment.phone import is_valid_phone_number
from naks.checkout.util import get_now, get_seconds_until
from naks.checkout.watcher import PaymentRecordStore, PaymentStatusWatcher

OnChange = Callable[[CheckoutData], Awaitable[None]]
"""Called with each new :class:`CheckoutData`."""

INITIATION_FAILED_MESSAGE = "We could not send the M-Pesa prompt to your phone."
PAYMENT_FAILED_MESSAGE = "Your payment was not completed."
STATUS_UNKNOWN_MESSAGE = (
    "We have not received confirmation of your payment yet. Check your M-Pesa "
    "messages and check back later. Do not pay again."
)

INITIATION_GRACE = 2
"""Multiple of the gateway request timeout after which an initiation is stale."""

INVALID_FIELDS_NOTICE = Notice(
    NoticeTone.error, "Check the highlighted fields", NoticeAction.edit_field
)


class CheckoutStateError(RuntimeError):
    """Raised when an action is not allowed in the checkout's current state."""

    pass


def create_checkout_data(event: Event, customer: CustomerIdentity) -> CheckoutData:
    """Start a checkout session for an event.

    Signed-in customers have their details filled from their account.
    """
    return CheckoutData(
        event=EventSnapshot.create(event),
        order=Order(event_id=event.id),
        user_id=customer.uid,
        customer_name=customer.display_name,
        customer_email=customer.email,
        mpesa_phone_number=customer.phone_number,
    )


def validate_review_order(data: CheckoutData) -> dict[str, str]:
    """Validate the order and customer details."""
    errors = {}
    if data.order.is_empty:
        errors["order"] = "Select at least one ticket"
    elif data.calculated_total_price <= ZERO:
        errors["order"] = "The order total must be greater than zero"

    if not data.is_authenticated:
        errors.update(validate_customer_info(data.customer_name, data.customer_email))

    return errors


def validate_coupon(data: CheckoutData) -> dict[str, str]:
    """The coupon step is optional."""
    return {}


def validate_payment_details(data: CheckoutData) -> dict[str, str]:
    """Validate the payment details."""
    errors = {}
    if not is_valid_phone_number(data.mpesa_phone_number):
        errors["mpesa_phone_number"] = INVALID_PHONE_MESSAGE

    if data.final_amount_to_pay <= ZERO:
        errors["final_amount_to_pay"] = INVALID_AMOUNT_MESSAGE

    return errors


STEP_VALIDATORS: dict[CheckoutStep, Callable[[CheckoutData], dict[str, str]]] = {
    CheckoutStep.review_order: validate_review_order,
    CheckoutStep.coupon: validate_coupon,
    CheckoutStep.payment_details: validate_payment_details,
}


class CheckoutOrchestrator:
    """Sequences the checkout steps for one session."""

    def __init__(
        self,
        data: CheckoutData,
        *,
        event: Event,
        config: PaymentConfig,
        coupon_resolver: CouponResolver,
        initiator: PaymentInitiator,
        store: PaymentRecordStore,
        on_change: Optional[OnChange] = None,
        get_time: Callable[[], datetime] = get_now,
    ):
        self._data = data
        self.event = event
        self.config = config
        self.coupon_resolver = coupon_resolver
        self.initiator = initiator
        self.store = store
        self.on_change = on_change
        self.get_time = get_time
        self._watcher: Optional[PaymentStatusWatcher] = None

    @property
    def data(self) -> CheckoutData:
        """The current :class:`CheckoutData`."""
        return self._data

    @property
    def watcher(self) -> Optional[PaymentStatusWatcher]:
        """The active :class:`PaymentStatusWatcher`, if any."""
        return self._watcher

    async def change_quantity(self, ticket_type_id: str, delta: int) -> dict[str, str]:
        """Change the quantity of a ticket type.

        Returns:
            Field errors, empty if the change was made.
        """
        self._check_editable()
        ticket_type = self.event.get_ticket_type(ticket_type_id)
        if ticket_type is None:
            return {"ticket_type_id": "Unknown ticket type"}

        try:
            order = self._data.order.add_or_increment(ticket_type, delta)
        except CapacityExceeded as e:
            return {f"tickets.{ticket_type_id}": str(e)}

        await self._change_order(order)
        return {}

    async def remove_ticket(self, ticket_type_id: str):
        """Remove a ticket type from the order."""
        self._check_editable()
        await self._change_order(self._data.order.remove(ticket_type_id))

    async def set_customer_info(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        delivery_method: Optional[DeliveryMethod] = None,
    ) -> dict[str, str]:
        """Update the customer details.

        Signed-in customers may only change the delivery method.

        Returns:
            Field errors for the new details.

        Raises:
            CheckoutStateError: If a signed-in customer changes their name or email.
        """
        self._check_editable()
        data = self._data

        if data.is_authenticated:
            if name is not None or email is not None:
                raise CheckoutStateError("Customer details come from your account")
            errors = {}
        else:
            name = name.strip() if name is not None else data.customer_name
            email = email.strip() if email is not None else data.customer_email
            data = evolve(data, customer_name=name, customer_email=email)
            errors = validate_customer_info(name, email)

        if delivery_method is not None:
            data = evolve(data, ticket_delivery_method=delivery_method)

        await self._set(data)
        return errors

    async def set_payment_details(
        self,
        phone_number: Optional[str],
        payment_method: PaymentMethod = PaymentMethod.mpesa_stk,
    ) -> dict[str, str]:
        """Set the payment method and phone number.

        Returns:
            Field errors for the new details.
        """
        self._check_editable()
        phone_number = phone_number.strip() if phone_number else None
        await self._set(
            evolve(
                self._data,
                selected_payment_method=payment_method,
                mpesa_phone_number=phone_number,
            )
        )
        if not is_valid_phone_number(phone_number):
            return {"mpesa_phone_number": INVALID_PHONE_MESSAGE}
        return {}

    async def apply_coupon(self, code: Optional[str]) -> CouponResult:
        """Apply a coupon code.

        A rejected code leaves the checkout unchanged.
        """
        self._check_editable()
        result = await self.coupon_resolver.apply(
            code, self._data.calculated_total_price, self.event.id
        )
        if not result.valid or result.coupon is None:
            return result

        await self._set(
            evolve(
                self._data,
                coupon_code=result.coupon.code,
                coupon_discount_amount=result.discount_amount,
                notice=Notice(NoticeTone.info, f"Coupon {result.coupon.code} applied"),
            )
        )
        audit_log.bind(type=AuditLogType.coupon_apply).info(
            f"Coupon {result.coupon.code} applied to checkout for {self.event.id}, "
            f"discount {result.discount_amount}"
        )
        return result

    async def remove_coupon(self):
        """Remove the applied coupon."""
        self._check_editable()
        if self._data.coupon_code is None:
            return
        await self._set(
            evolve(
                self._data, coupon_code=None, coupon_discount_amount=ZERO, notice=None
            )
        )

    async def next(self) -> dict[str, str]:
        """Move to the next step.

        Moving on from the payment details step initiates payment.

        Returns:
            Field errors that prevent moving on, empty on success.
        """
        step = self._data.step
        if step == CheckoutStep.confirmation:
            raise CheckoutStateError("Checkout is already at the last step")
        elif step == CheckoutStep.payment_details:
            return await self.pay()

        if self._data.is_processing_payment:
            raise CheckoutStateError("Payment is being requested")

        errors = STEP_VALIDATORS[step](self._data)
        if errors:
            await self._set(evolve(self._data, notice=INVALID_FIELDS_NOTICE))
            return errors

        next_step = STEP_ORDER[STEP_ORDER.index(step) + 1]
        await self._set(evolve(self._data, step=next_step, notice=None))
        return {}

    async def back(self):
        """Move to the previous step without validating."""
        data = self._data
        if data.step == CheckoutStep.confirmation or data.payment_started:
            raise CheckoutStateError("Payment has already been requested")
        elif data.is_processing_payment:
            raise CheckoutStateError("Payment is being requested")
        elif data.step == CheckoutStep.review_order:
            return

        prev_step = STEP_ORDER[STEP_ORDER.index(data.step) - 1]
        await self._set(evolve(data, step=prev_step, notice=None))

    async def pay(self) -> dict[str, str]:
        """Initiate payment and move to the confirmation step once it responds.

        Only one initiation may be in flight. A failed initiation stays on the
        payment details step so the customer can retry.

        Returns:
            Field errors that prevent paying, empty otherwise.

        Raises:
            CheckoutStateError: If payment was already requested.
        """
        data = self._data
        if data.is_processing_payment:
            raise CheckoutStateError("Payment is being requested")
        elif not data.can_pay:
            raise CheckoutStateError("Payment cannot be requested now")

        errors = {**validate_review_order(data), **validate_payment_details(data)}
        if errors:
            await self._set(evolve(data, notice=INVALID_FIELDS_NOTICE))
            return errors

        # set before the first await
        self._data = evolve(
            data,
            payment_status=PaymentStatus.initiating,
            initiating_since=self.get_time(),
            payment_error=None,
            notice=None,
        )
        # if this raises, the payer may have been prompted, so the checkout stays
        # initiating until expire_stale_initiation reports the status as unknown
        await self._set(self._data)
        result = await self.initiator.initiate(
            data.mpesa_phone_number,
            data.final_amount_to_pay,
            build_account_reference(
                self.config.account_reference_prefix,
                data.event.name,
                data.customer_name,
                data.user_id,
            ),
            PaymentMetadata(
                event_id=data.event.id,
                line_items=tuple(
                    OrderLine(
                        ticket_type_id=li.ticket_type_id,
                        name=li.name,
                        unit_price=li.unit_price,
                        quantity=li.quantity,
                    )
                    for li in data.order.active_items
                ),
                customer_email=data.customer_email,
                customer_name=data.customer_name,
            ),
        )

        if not result.success:
            await self._set(_initiation_failed(self._data, result.reason))
            return {}

        await self._set(
            evolve(
                self._data,
                payment_status=PaymentStatus.pending,
                initiating_since=None,
                transaction_id=result.payment_id,
                provider_request_id=result.provider_request_id,
                initiated_at=self.get_time(),
                step=CheckoutStep.confirmation,
                notice=Notice(
                    NoticeTone.info,
                    "Check your phone and enter your M-Pesa PIN to complete the "
                    "payment",
                ),
            )
        )
        self.resume()
        return {}

    def resume(self) -> Optional[PaymentStatusWatcher]:
        """Watch the payment record of a session awaiting confirmation.

        Uses the stored payment ID. Payment is never requested again.

        Returns:
            The :class:`PaymentStatusWatcher`, or None if there is nothing to watch.
        """
        data = self._data
        if (
            data.step != CheckoutStep.confirmation
            or data.transaction_id is None
            or data.payment_status.is_terminal
            or data.status_timed_out
        ):
            return None

        if self._watcher is None:
            self._watcher = PaymentStatusWatcher(
                self.store,
                data.transaction_id,
                deadline=self._get_deadline(),
                get_time=self.get_time,
            )
            self._watcher.start()
        return self._watcher

    async def expire_stale_initiation(self) -> bool:
        """Give up on an initiation request that never finished.

        This happens when the request handling it was interrupted. The payer may
        have been prompted, so the session moves to the confirmation step with an
        unknown status instead of allowing a second prompt.

        Returns:
            Whether the checkout was changed.
        """
        data = self._data
        if not data.is_processing_payment:
            return False

        if data.initiating_since is not None:
            limit = timedelta(seconds=self.config.request_timeout * INITIATION_GRACE)
            if self.get_time() < data.initiating_since + limit:
                return False

        logger.warning(
            f"Payment initiation for {data.event.id} started at "
            f"{data.initiating_since} did not finish, the status is unknown"
        )
        await self._set(
            evolve(
                data,
                payment_status=PaymentStatus.pending,
                initiating_since=None,
                status_timed_out=True,
                step=CheckoutStep.confirmation,
                notice=Notice(
                    NoticeTone.warning, STATUS_UNKNOWN_MESSAGE, NoticeAction.check_later
                ),
            )
        )
        return True

    async def wait_for_outcome(
        self, wait: float = 0.0
    ) -> Optional[ConfirmationOutcome]:
        """Update the payment status, waiting up to ``wait`` seconds for an outcome.

        Returns:
            The :class:`ConfirmationOutcome`, or None if payment is still pending.
        """
        if await self.expire_stale_initiation():
            return self._data.outcome

        data = self._data
        if data.transaction_id is None or data.payment_status.is_terminal:
            return data.outcome

        watcher = self.resume() if wait > 0 else None
        if watcher is not None:
            record = await watcher.wait(wait)
            timed_out = watcher.timed_out
            if timed_out:
                # the deadline may have passed before the watcher subscribed
                record = await self.store.get(data.transaction_id)
        else:
            # a timed out session still picks up a late outcome
            record = await self.store.get(data.transaction_id)
            remaining = get_seconds_until(self._get_deadline(), self.get_time())
            timed_out = remaining is not None and remaining <= 0

        new_data = _apply_record(data, record) if record is not None else data
        if (
            timed_out
            and not new_data.payment_status.is_terminal
            and not new_data.status_timed_out
        ):
            logger.info(f"Payment {data.transaction_id} status is unknown")
            new_data = evolve(
                new_data,
                status_timed_out=True,
                notice=Notice(
                    NoticeTone.warning, STATUS_UNKNOWN_MESSAGE, NoticeAction.check_later
                ),
            )

        if new_data != data:
            await self._set(new_data)
        return self._data.outcome

    def abandon(self):
        """Check that the checkout may be abandoned and stop watching.

        Raises:
            CheckoutStateError: If payment was already requested.
        """
        if not self._data.can_abandon:
            raise CheckoutStateError("Payment has already been requested")
        self.close()

    def close(self):
        """Stop watching the payment record."""
        if self._watcher is not None:
            self._watcher.close()

    def _check_editable(self):
        data = self._data
        if data.is_processing_payment:
            raise CheckoutStateError("Payment is being requested")
        elif data.step == CheckoutStep.confirmation or data.payment_started:
            raise CheckoutStateError("Payment has already been requested")

    def _get_deadline(self) -> Optional[datetime]:
        if self._data.initiated_at is None:
            return None
        return self._data.initiated_at + timedelta(seconds=self.config.status_timeout)

    async def _change_order(self, order: Order):
        data = evolve(self._data, order=order, notice=None)
        if data.coupon_code is not None:
            data = await self._reapply_coupon(data)
        await self._set(data)

    async def _reapply_coupon(self, data: CheckoutData) -> CheckoutData:
        result = await self.coupon_resolver.apply(
            data.coupon_code, data.calculated_total_price, self.event.id
        )
        if result.valid:
            return evolve(data, coupon_discount_amount=result.discount_amount)

        return evolve(
            data,
            coupon_code=None,
            coupon_discount_amount=ZERO,
            notice=Notice(
                NoticeTone.warning,
                f"Coupon {data.coupon_code} was removed: {result.reason}",
                NoticeAction.edit_field,
            ),
        )

    async def _set(self, data: CheckoutData):
        self._data = data
        if self.on_change is not None:
            await self.on_change(data)


def _initiation_failed(data: CheckoutData, reason: Optional[str]) -> CheckoutData:
    message = (
        f"{INITIATION_FAILED_MESSAGE} {reason}" if reason else INITIATION_FAILED_MESSAGE
    )
    return evolve(
        data,
        payment_status=PaymentStatus.failed,
        initiating_since=None,
        payment_error=reason,
        notice=Notice(NoticeTone.error, message, NoticeAction.retry),
    )


def _apply_record(data: CheckoutData, record: PaymentRecord) -> CheckoutData:
    if data.payment_status.is_terminal:
        return data

    if record.status == PaymentStatus.completed:
        receipt = record.mpesa_receipt_number
        return evolve(
            data,
            payment_status=PaymentStatus.completed,
            mpesa_receipt_number=receipt,
            notice=Notice(
                NoticeTone.info,
                f"Payment received (receipt {receipt}). Your tickets are ready."
                if receipt
                else "Payment received. Your tickets are ready.",
                NoticeAction.view_tickets,
            ),
        )
    elif record.status == PaymentStatus.failed:
        return evolve(
            data,
            payment_status=PaymentStatus.failed,
            payment_error=record.error_reason,
            notice=Notice(
                NoticeTone.error,
                record.error_reason or PAYMENT_FAILED_MESSAGE,
                NoticeAction.back_to_event,
            ),
        )
    elif record.status != data.payment_status:
        return evolve(data, payment_status=record.status)
    else:
        return data
