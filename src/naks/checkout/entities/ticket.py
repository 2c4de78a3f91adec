"""Ticket entities."""
from __future__ import annotations

import secrets
from typing import Optional
from uuid import UUID

from naks.checkout.entities.base import CODE_LENGTH, PKUUID, Base, Created
from naks.checkout.models.customer import DeliveryMethod
from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

TICKET_CODE_LENGTH = 12
"""The length of a ticket code."""

_code_chars = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_code() -> str:
    """Generate a random ticket code."""
    return "".join(secrets.choice(_code_chars) for _ in range(TICKET_CODE_LENGTH))


class TicketEntity(Base):
    """An issued ticket."""

    __tablename__ = "ticket"

    id: Mapped[PKUUID]
    """The ticket ID."""

    code: Mapped[str] = mapped_column(String(TICKET_CODE_LENGTH), unique=True)
    """The code printed on the ticket."""

    checkout_id: Mapped[UUID] = mapped_column(ForeignKey("checkout.id"), index=True)
    """The checkout the ticket was bought in."""

    payment_id: Mapped[str] = mapped_column(ForeignKey("payment.id"))
    """The payment ID."""

    event_id: Mapped[str] = mapped_column(index=True)
    """The event ID."""

    ticket_type_id: Mapped[str]
    """The ticket type ID."""

    ticket_type_name: Mapped[str]
    """The ticket type name."""

    user_id: Mapped[Optional[str]] = mapped_column(index=True)
    """The authenticated customer's ID."""

    customer_name: Mapped[Optional[str]]
    """The customer name."""

    customer_email: Mapped[Optional[str]]
    """The email tickets are delivered to."""

    delivery_method: Mapped[DeliveryMethod] = mapped_column(
        String(CODE_LENGTH)
    )
    """How the ticket is delivered."""

    date_created: Mapped[Created]
    """The date the ticket was issued."""

    def __repr__(self):
        return f"<Ticket code={self.code} event_id={self.event_id}>"
