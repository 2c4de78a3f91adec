"""Event models."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import date, time  # noqa
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from attrs import Factory, field, frozen
from naks.checkout.models.identifier import validate_identifier
from typing_extensions import Self

if TYPE_CHECKING:
    from naks.checkout.auth import User


def _validate_price(a, i, v):
    if v < 0:
        raise ValueError("Price cannot be negative")


def _validate_optional_count(a, i, v):
    if v is not None and v < 0:
        raise ValueError(f"{i.name} cannot be negative")


@frozen(kw_only=True)
class TicketType:
    """A ticket type sold for an event."""

    id: str = field(validator=validate_identifier)
    """The ticket type ID."""

    name: str
    """The ticket type name."""

    price: Decimal = field(validator=_validate_price)
    """The unit price."""

    available: Optional[int] = field(default=None, validator=_validate_optional_count)
    """How many tickets of this type may be bought, if limited."""

    max_per_order: Optional[int] = field(
        default=None, validator=_validate_optional_count
    )
    """The most tickets of this type in one order, if limited."""

    @property
    def limit(self) -> Optional[int]:
        """The effective per-order quantity limit."""
        limits = [n for n in (self.available, self.max_per_order) if n is not None]
        return min(limits) if limits else None


@frozen(kw_only=True)
class Event:
    """Event class."""

    id: str = field(validator=validate_identifier)
    """The event ID."""

    name: str
    """The event name."""

    description: Optional[str] = None
    """The event description."""

    date: date
    """The event start date."""

    start_time: Optional[time] = None
    """The event start time."""

    location: Optional[str] = None
    """The event location."""

    open: bool = False
    """Whether tickets are on sale."""

    visible: bool = False
    """Whether the event is listed."""

    ticket_types: Sequence[TicketType] = ()
    """The ticket types."""

    def get_ticket_type(self, id: str) -> Optional[TicketType]:
        """Get a ticket type by ID."""
        return next((t for t in self.ticket_types if t.id == id), None)

    def is_visible_to(self, user: Optional[User]) -> bool:
        """Get whether the event is visible to the given user."""
        return self.visible or user is not None and user.is_admin

    def is_open_to(self, user: Optional[User]) -> bool:
        """Get whether tickets can be bought by the given user."""
        return self.open and self.is_visible_to(user)


@frozen(kw_only=True)
class EventSnapshot:
    """Event details copied into a checkout for display and payment references."""

    id: str
    name: str
    date: date
    start_time: Optional[time] = None
    location: Optional[str] = None

    @classmethod
    def create(cls, event: Event) -> Self:
        """Create from a :class:`Event`."""
        return cls(
            id=event.id,
            name=event.name,
            date=event.date,
            start_time=event.start_time,
            location=event.location,
        )


def _validate_unique_ids(a, i, v):
    event_ids = [e.id for e in v]
    if len(set(event_ids)) != len(event_ids):
        raise ValueError("Event IDs must be unique")

    for event in v:
        type_ids = [t.id for t in event.ticket_types]
        if len(set(type_ids)) != len(type_ids):
            raise ValueError(f"Ticket type IDs must be unique in event {event.id}")


@frozen
class EventConfig:
    """Event configuration."""

    events: Sequence[Event] = field(validator=_validate_unique_ids)

    _events_by_id: dict[str, Event] = field(
        init=False,
        eq=False,
        default=Factory(lambda s: {e.id: e for e in s.events}, takes_self=True),
    )

    def get_event(self, id: str) -> Optional[Event]:
        """Get an event by ID."""
        return self._events_by_id.get(id)
