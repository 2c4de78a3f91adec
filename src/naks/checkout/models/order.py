"""Order models."""
from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Optional

from attrs import evolve, field, frozen
from naks.checkout.models.event import TicketType
from naks.checkout.money import ZERO


class OrderError(ValueError):
    """Raised when an order change cannot be applied."""

    pass


class InvalidQuantityError(OrderError):
    """Raised when a quantity would be invalid."""

    pass


class CapacityExceeded(OrderError):
    """Raised when a quantity would exceed what is available."""

    ticket_type_id: str
    """The ticket type ID."""

    limit: int
    """The largest allowed quantity."""

    def __init__(self, ticket_type_id: str, limit: int):
        super().__init__(f"Only {limit} tickets of this type are available")
        self.ticket_type_id = ticket_type_id
        self.limit = limit


def _validate_quantity(a, i, v):
    if v < 0:
        raise InvalidQuantityError("Quantity cannot be negative")


@frozen(kw_only=True)
class LineItem:
    """A ticket type and its selected quantity."""

    ticket_type_id: str
    """The ticket type ID."""

    name: str
    """The ticket type name."""

    unit_price: Decimal
    """The price of one ticket."""

    quantity: int = field(default=0, validator=_validate_quantity)
    """The quantity. Zero means the line item is logically absent."""

    @property
    def total_price(self) -> Decimal:
        """The line item total."""
        return self.unit_price * self.quantity


def _validate_line_items(a, i, v):
    ids = [li.ticket_type_id for li in v]
    if len(ids) != len(set(ids)):
        raise OrderError("Duplicate ticket type")


@frozen(kw_only=True)
class Order:
    """The shopping selection for one event."""

    event_id: str
    """The event ID."""

    line_items: Sequence[LineItem] = field(default=(), validator=_validate_line_items)
    """The line items, in the order they were added."""

    @property
    def active_items(self) -> tuple[LineItem, ...]:
        """The line items with a non-zero quantity."""
        return tuple(li for li in self.line_items if li.quantity > 0)

    @property
    def is_empty(self) -> bool:
        """Whether no tickets are selected."""
        return not self.active_items

    @property
    def ticket_count(self) -> int:
        """The total number of tickets."""
        return sum(li.quantity for li in self.line_items)

    def get_line_item(self, ticket_type_id: str) -> Optional[LineItem]:
        """Get a line item by ticket type ID."""
        return next(
            (li for li in self.line_items if li.ticket_type_id == ticket_type_id), None
        )

    def add_or_increment(self, ticket_type: TicketType, delta: int) -> Order:
        """Adjust the quantity of a ticket type.

        The quantity is clamped at zero. A ticket type not in the order yet is only
        inserted when ``delta`` is positive.

        Args:
            ticket_type: The :class:`TicketType`.
            delta: The quantity change.

        Returns:
            A new :class:`Order`.

        Raises:
            CapacityExceeded: If the quantity would exceed the ticket type's limit.
        """
        cur = self.get_line_item(ticket_type.id)
        if cur is None:
            if delta <= 0:
                return self
            cur = LineItem(
                ticket_type_id=ticket_type.id,
                name=ticket_type.name,
                unit_price=ticket_type.price,
            )
            items = (*self.line_items, cur)
        else:
            items = tuple(self.line_items)

        new_qty = max(cur.quantity + delta, 0)
        limit = ticket_type.limit
        if delta > 0 and limit is not None and new_qty > limit:
            raise CapacityExceeded(ticket_type.id, limit)

        return self._replace(evolve(cur, quantity=new_qty), items)

    def remove(self, ticket_type_id: str) -> Order:
        """Set the quantity of a ticket type to zero."""
        cur = self.get_line_item(ticket_type_id)
        if cur is None or cur.quantity == 0:
            return self
        return self._replace(evolve(cur, quantity=0), self.line_items)

    def subtotal(self) -> Decimal:
        """Sum of the line item totals, unrounded."""
        return sum((li.total_price for li in self.line_items), ZERO)

    def _replace(self, item: LineItem, items: Sequence[LineItem]) -> Order:
        new_items = tuple(
            item if li.ticket_type_id == item.ticket_type_id else li for li in items
        )
        return evolve(self, line_items=new_items)
