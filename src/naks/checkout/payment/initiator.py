"""Payment initiation."""
from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from decimal import Decimal
from typing import Optional

from attrs import frozen
from loguru import logger
from naks.checkout.log import AuditLogType, audit_log
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    OrderLine,
)
from naks.checkout.money import ZERO
from naks.checkout.payment.base import PaymentGateway, PaymentServiceError
from naks.checkout.payment.phone import normalize_phone_number

INVALID_PHONE_MESSAGE = "Enter a valid M-Pesa number, e.g. 0712345678"
INVALID_AMOUNT_MESSAGE = "The amount to pay must be greater than zero"

_whitespace = re.compile(r"\s+")

PaymentRecorder = Callable[[InitiationRequest, InitiationResult], Awaitable[None]]
"""Called with each successful initiation, before the result is returned."""


def build_account_reference(
    prefix: str,
    event_name: str,
    customer_name: Optional[str] = None,
    user_id: Optional[str] = None,
) -> str:
    """Build the account reference shown on the payer's statement.

    Example: ``NAKS_JANED_SAUTI``
    """
    who = customer_name or user_id or "Guest"
    who = _whitespace.sub("", who)[:5] or "GUEST"
    what = _whitespace.sub("", event_name)[:5]
    return f"{prefix}_{who}_{what}".upper()


@frozen(kw_only=True)
class PaymentMetadata:
    """Order details sent with a payment request."""

    event_id: str
    line_items: Sequence[OrderLine] = ()
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None


class PaymentInitiator:
    """Starts mobile money payments.

    Rejected or failed requests, including unexpected gateway errors, are returned
    as an unsuccessful :class:`InitiationResult` and are never retried. Errors
    from the recorder are raised, since the payer may already have been prompted.
    """

    def __init__(
        self,
        app_id: str,
        gateway: Optional[PaymentGateway],
        recorder: Optional[PaymentRecorder] = None,
    ):
        self.app_id = app_id
        self.gateway = gateway
        self.recorder = recorder

    async def initiate(
        self,
        phone_number: Optional[str],
        amount: Decimal,
        account_reference: str,
        metadata: PaymentMetadata,
    ) -> InitiationResult:
        """Send a payment prompt to the payer's phone.

        Args:
            phone_number: The phone number, as entered.
            amount: The amount to pay.
            account_reference: The account reference.
            metadata: The :class:`PaymentMetadata`.

        Returns:
            The :class:`InitiationResult`.
        """
        normalized = normalize_phone_number(phone_number)
        if normalized is None:
            return InitiationResult.failure(INVALID_PHONE_MESSAGE)

        if amount <= ZERO:
            return InitiationResult.failure(INVALID_AMOUNT_MESSAGE)

        if self.gateway is None:
            logger.error("No payment gateway is configured")
            return InitiationResult.failure(None)

        request = InitiationRequest(
            app_id=self.app_id,
            phone_number=normalized,
            amount=amount,
            account_reference=account_reference,
            event_id=metadata.event_id,
            line_items=metadata.line_items,
            customer_email=metadata.customer_email,
            customer_name=metadata.customer_name,
        )

        try:
            result = await self.gateway.initiate(request)
        except PaymentServiceError as e:
            logger.opt(exception=e).error(
                f"Payment initiation via {self.gateway.id} failed"
            )
            result = InitiationResult.failure(None)
        except Exception as e:
            logger.opt(exception=e).error(
                f"Unexpected error from payment gateway {self.gateway.id}"
            )
            result = InitiationResult.failure(None)

        if not result.success:
            audit_log.bind(type=AuditLogType.payment_initiate_failed).info(
                f"Payment of {amount} for {account_reference} was rejected: "
                f"{result.reason}"
            )
            return result

        if self.recorder is not None:
            await self.recorder(request, result)

        audit_log.bind(
            type=AuditLogType.payment_initiate, payment=result.payment_id
        ).info(f"Payment of {amount} requested for {account_reference}")
        return result
