"""Checkout entities."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from naks.checkout.entities.base import (
    EXTERNAL_ID_LENGTH,
    PKUUID,
    Base,
    Created,
    JSONData,
)
from naks.checkout.models.checkout import CheckoutData
from naks.checkout.serialization import get_converter
from naks.checkout.util import get_now
from sqlalchemy import String
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column


class CheckoutState(str, Enum):
    """State of a checkout session."""

    open = "open"
    """The checkout is in progress."""

    closed = "closed"
    """The checkout was paid for."""

    abandoned = "abandoned"
    """The customer left before paying."""


class CheckoutEntity(Base):
    """Checkout session entity."""

    __tablename__ = "checkout"

    id: Mapped[PKUUID]
    """The checkout ID."""

    state: Mapped[CheckoutState] = mapped_column(default=CheckoutState.open)
    """The checkout state."""

    event_id: Mapped[str] = mapped_column(index=True)
    """The event ID."""

    user_id: Mapped[Optional[str]] = mapped_column(index=True)
    """The ID of the authenticated customer."""

    date_created: Mapped[Created]
    """The date the checkout was created."""

    date_updated: Mapped[Optional[datetime]]
    """The date the checkout data last changed."""

    date_closed: Mapped[Optional[datetime]]
    """The date the checkout was closed or abandoned."""

    payment_id: Mapped[Optional[str]] = mapped_column(String(EXTERNAL_ID_LENGTH))
    """The payment record ID."""

    data: Mapped[JSONData]
    """The :class:`CheckoutData`."""

    def __repr__(self):
        return f"<Checkout id={self.id} event_id={self.event_id} state={self.state}>"

    @classmethod
    def create(cls, data: CheckoutData) -> CheckoutEntity:
        """Create a checkout entity from :class:`CheckoutData`."""
        entity = cls(
            state=CheckoutState.open,
            event_id=data.event.id,
            user_id=data.user_id,
            date_created=get_now(),
        )
        entity.set_data(data)
        return entity

    @hybrid_property
    def is_open(self) -> bool:
        """Whether the checkout is in progress."""
        return self.state == CheckoutState.open

    def get_data(self) -> CheckoutData:
        """Get the :class:`CheckoutData` model."""
        return get_converter().structure(self.data or {}, CheckoutData)

    def set_data(self, data: CheckoutData):
        """Set the checkout data."""
        self.data = get_converter().unstructure(data)
        self.payment_id = data.transaction_id
        self.date_updated = get_now()

    def close(self, date_closed: Optional[datetime] = None) -> bool:
        """Set the state to ``closed``.

        Returns:
            Whether a change was made.

        Raises:
            ValueError: If the checkout was abandoned.
        """
        if self.state == CheckoutState.closed:
            return False

        if self.state != CheckoutState.open:
            raise ValueError("Checkout was abandoned")

        self.state = CheckoutState.closed
        self.date_closed = date_closed if date_closed is not None else get_now()
        return True

    def abandon(self, date_abandoned: Optional[datetime] = None) -> bool:
        """Set the state to ``abandoned``.

        Returns:
            Whether a change was made.

        Raises:
            ValueError: If the checkout is closed.
        """
        if self.state == CheckoutState.abandoned:
            return False

        if self.state != CheckoutState.open:
            raise ValueError("Checkout is closed")

        self.state = CheckoutState.abandoned
        self.date_closed = date_abandoned if date_abandoned is not None else get_now()
        return True
