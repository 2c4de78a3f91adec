"""Ticket service."""
from collections.abc import Sequence
from uuid import UUID

from loguru import logger
from naks.checkout.entities.checkout import CheckoutEntity
from naks.checkout.entities.ticket import TicketEntity, generate_code
from naks.checkout.log import AuditLogType, audit_log
from naks.checkout.models.checkout import CheckoutData
from naks.checkout.models.event import EventConfig
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession


class TicketService:
    """Ticket service."""

    def __init__(self, db: AsyncSession, event_config: EventConfig):
        self.db = db
        self.event_config = event_config

    async def list_tickets(self, checkout_id: UUID) -> Sequence[TicketEntity]:
        """List the tickets issued for a checkout."""
        q = (
            select(TicketEntity)
            .where(TicketEntity.checkout_id == checkout_id)
            .order_by(TicketEntity.ticket_type_id, TicketEntity.code)
        )
        res = await self.db.execute(q)
        return res.scalars().all()

    async def count_issued(self, event_id: str) -> dict[str, int]:
        """Count the tickets issued for an event, by ticket type ID."""
        q = (
            select(TicketEntity.ticket_type_id, func.count())
            .where(TicketEntity.event_id == event_id)
            .group_by(TicketEntity.ticket_type_id)
        )
        res = await self.db.execute(q)
        return {type_id: count for type_id, count in res.all()}

    async def issue_tickets(
        self, checkout: CheckoutEntity, data: CheckoutData, payment_id: str
    ) -> Sequence[TicketEntity]:
        """Issue one ticket per unit bought in a checkout.

        Tickets are only issued once per checkout.

        Returns:
            The tickets of the checkout.
        """
        existing = await self.list_tickets(checkout.id)
        if existing:
            return existing

        tickets = []
        for li in data.order.active_items:
            for _ in range(li.quantity):
                tickets.append(
                    TicketEntity(
                        code=generate_code(),
                        checkout_id=checkout.id,
                        payment_id=payment_id,
                        event_id=data.event.id,
                        ticket_type_id=li.ticket_type_id,
                        ticket_type_name=li.name,
                        user_id=data.user_id,
                        customer_name=data.customer_name,
                        customer_email=data.customer_email,
                        delivery_method=data.ticket_delivery_method,
                    )
                )

        self.db.add_all(tickets)
        await self.db.flush()

        audit_log.bind(type=AuditLogType.tickets_issue, checkout=checkout.id).success(
            "Issued {n} tickets for {event} via {method}",
            n=len(tickets),
            event=data.event.id,
            method=data.ticket_delivery_method.value,
        )

        await self._check_oversold(data.event.id)
        return tickets

    async def _check_oversold(self, event_id: str):
        # capacity is checked when the cart changes, not when tickets are issued
        event = self.event_config.get_event(event_id)
        if event is None or all(tt.available is None for tt in event.ticket_types):
            return

        issued = await self.count_issued(event_id)
        for tt in event.ticket_types:
            count = issued.get(tt.id, 0)
            if tt.available is not None and count > tt.available:
                logger.warning(
                    f"Event {event_id} ticket type {tt.id} is oversold: "
                    f"{count} issued, {tt.available} available"
                )
