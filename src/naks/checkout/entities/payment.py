"""Payment entities."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from loguru import logger
from naks.checkout.entities.base import (
    CODE_LENGTH,
    EXTERNAL_ID_LENGTH,
    Base,
    Created,
    JSONList,
)
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    PaymentLogEntry,
    PaymentRecord,
    PaymentStatus,
)
from naks.checkout.payment.base import PaymentStateError
from naks.checkout.serialization import get_converter
from naks.checkout.util import get_now
from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

RECORD_STATUSES = (
    PaymentStatus.pending,
    PaymentStatus.processing,
    PaymentStatus.completed,
    PaymentStatus.failed,
)


class PaymentEntity(Base):
    """Payment record entity."""

    __tablename__ = "payment"

    id: Mapped[str] = mapped_column(String(EXTERNAL_ID_LENGTH), primary_key=True)
    """The payment ID."""

    checkout_id: Mapped[UUID] = mapped_column(ForeignKey("checkout.id"), index=True)
    """The checkout ID."""

    app_id: Mapped[str]
    """The application ID."""

    service: Mapped[str] = mapped_column(String(CODE_LENGTH * 2))
    """The gateway ID."""

    provider_request_id: Mapped[Optional[str]] = mapped_column(
        String(EXTERNAL_ID_LENGTH), unique=True
    )
    """The gateway's request ID."""

    status: Mapped[PaymentStatus] = mapped_column(default=PaymentStatus.pending)
    """The payment status."""

    amount: Mapped[Decimal]
    """The amount requested."""

    currency: Mapped[str] = mapped_column(String(3))
    """The currency code."""

    phone_number: Mapped[str] = mapped_column(String(16))
    """The normalized phone number."""

    account_reference: Mapped[str]
    """The account reference."""

    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(
        String(EXTERNAL_ID_LENGTH)
    )
    """The receipt number, once completed."""

    error_reason: Mapped[Optional[str]]
    """The failure reason, once failed."""

    date_created: Mapped[Created]
    """The date the payment was requested."""

    date_updated: Mapped[Optional[datetime]]
    """The date of the latest status change."""

    log: Mapped[JSONList]
    """Status changes, oldest first."""

    def __repr__(self):
        return f"<Payment id={self.id} status={self.status}>"

    @classmethod
    def create(
        cls,
        checkout_id: UUID,
        service: str,
        currency: str,
        request: InitiationRequest,
        result: InitiationResult,
    ) -> PaymentEntity:
        """Create the record of a successful initiation."""
        now = get_now()
        entity = cls(
            id=result.payment_id,
            checkout_id=checkout_id,
            app_id=request.app_id,
            service=service,
            provider_request_id=result.provider_request_id,
            status=PaymentStatus.pending,
            amount=request.amount,
            currency=currency,
            phone_number=request.phone_number,
            account_reference=request.account_reference,
            date_created=now,
            log=[],
        )
        entity._append_log(now, PaymentStatus.pending, "Payment requested")
        return entity

    @property
    def is_terminal(self) -> bool:
        """Whether the status can no longer change."""
        return self.status.is_terminal

    def apply_update(
        self,
        status: PaymentStatus,
        *,
        mpesa_receipt_number: Optional[str] = None,
        error_reason: Optional[str] = None,
        message: Optional[str] = None,
    ) -> bool:
        """Apply a status reported by the gateway.

        Terminal statuses are absorbing: updates to a completed or failed payment
        are ignored.

        Returns:
            Whether the status changed.

        Raises:
            PaymentStateError: If the status is not a payment record status.
        """
        if status not in RECORD_STATUSES:
            raise PaymentStateError(f"Invalid payment status: {status}")

        if self.is_terminal:
            if status != self.status:
                logger.warning(
                    f"Ignoring {status.value} update for {self.status.value} "
                    f"payment {self.id}"
                )
            return False

        if status == self.status or (
            status == PaymentStatus.pending and self.status == PaymentStatus.processing
        ):
            return False

        now = get_now()
        self.status = status
        self.date_updated = now
        if status == PaymentStatus.completed:
            self.mpesa_receipt_number = mpesa_receipt_number
        elif status == PaymentStatus.failed:
            self.error_reason = error_reason

        self._append_log(now, status, message or error_reason)
        return True

    def get_record(self) -> PaymentRecord:
        """Get the :class:`PaymentRecord`."""
        return PaymentRecord(
            id=self.id,
            status=self.status,
            provider_request_id=self.provider_request_id,
            mpesa_receipt_number=self.mpesa_receipt_number,
            error_reason=self.error_reason,
            log=tuple(
                get_converter().structure(e, PaymentLogEntry) for e in self.log or ()
            ),
        )

    def _append_log(
        self, date: datetime, status: PaymentStatus, message: Optional[str]
    ):
        entry = get_converter().unstructure(PaymentLogEntry(date, status, message))
        # assign a new list so the change is detected
        self.log = [*(self.log or ()), entry]
