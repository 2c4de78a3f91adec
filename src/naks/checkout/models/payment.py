"""Payment models."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from attrs import frozen

TERMINAL_STATUSES = frozenset(("completed", "failed"))

FAILURE_ALIASES = frozenset(
    ("failed_issuance", "stk_push_failed", "payment_failed", "cancelled", "canceled")
)
"""Gateway statuses that mean the payment failed."""


class PaymentStatus(str, Enum):
    """Payment status.

    ``idle`` and ``initiating`` only exist on a checkout. A payment record starts
    as ``pending``.
    """

    idle = "idle"
    initiating = "initiating"
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is accepted."""
        return self.value in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: str) -> PaymentStatus:
        """Parse a status reported by a gateway.

        Raises:
            ValueError: If the status is not recognized.
        """
        v = value.strip().lower()
        if v in FAILURE_ALIASES:
            return cls.failed
        status = cls(v)
        if status in (cls.idle, cls.initiating):
            raise ValueError(f"Invalid payment status: {value}")
        return status


@frozen
class PaymentLogEntry:
    """A status change of a payment record."""

    date: datetime
    status: PaymentStatus
    message: Optional[str] = None


@frozen(kw_only=True)
class PaymentRecord:
    """A read-only view of a payment record."""

    id: str
    """The payment ID."""

    status: PaymentStatus
    """The payment status."""

    provider_request_id: Optional[str] = None
    """The gateway's request ID."""

    mpesa_receipt_number: Optional[str] = None
    """The receipt number, once completed."""

    error_reason: Optional[str] = None
    """The failure reason, once failed."""

    log: Sequence[PaymentLogEntry] = ()
    """Status changes, oldest first."""

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@frozen(kw_only=True)
class OrderLine:
    """A line item sent to the gateway."""

    ticket_type_id: str
    name: str
    unit_price: Decimal
    quantity: int


@frozen(kw_only=True)
class InitiationRequest:
    """A request to start a mobile money payment."""

    app_id: str
    phone_number: str
    """The normalized phone number."""

    amount: Decimal
    account_reference: str
    event_id: str
    line_items: Sequence[OrderLine] = ()
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None


@frozen
class InitiationResult:
    """The result of a payment initiation."""

    success: bool
    payment_id: Optional[str] = None
    provider_request_id: Optional[str] = None
    reason: Optional[str] = None
    """The provider's rejection reason, verbatim."""

    provider_error_code: Optional[str] = None

    @classmethod
    def failure(
        cls, reason: Optional[str], provider_error_code: Optional[str] = None
    ) -> InitiationResult:
        """Create a failed result."""
        return cls(False, reason=reason, provider_error_code=provider_error_code)


@frozen(kw_only=True)
class PaymentUpdate:
    """A status update reported by a gateway."""

    provider_request_id: str
    status: PaymentStatus
    mpesa_receipt_number: Optional[str] = None
    error_reason: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    """The raw update."""
