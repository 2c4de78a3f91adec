"""Checkout service module."""
from collections.abc import Mapping
from functools import partial
from typing import Optional
from uuid import UUID

from attrs import evolve
from naks.checkout.coupons import CouponResolver, StaticCouponSource
from naks.checkout.entities.checkout import CheckoutEntity
from naks.checkout.log import AuditLogType, audit_log
from naks.checkout.models.checkout import CheckoutData
from naks.checkout.models.config import Config
from naks.checkout.models.customer import CustomerIdentity
from naks.checkout.models.event import Event
from naks.checkout.orchestrator import CheckoutOrchestrator, create_checkout_data
from naks.checkout.payment.initiator import PaymentInitiator
from naks.checkout.services.coupon import CouponService
from naks.checkout.services.payment import PaymentService
from naks.checkout.services.ticket import TicketService
from naks.checkout.watcher import DatabasePaymentRecordStore
from sqlalchemy.ext.asyncio import AsyncSession


def apply_availability(event: Event, issued: Mapping[str, int]) -> Event:
    """Reduce each ticket type's availability by the tickets already issued."""
    ticket_types = tuple(
        evolve(tt, available=max(tt.available - issued.get(tt.id, 0), 0))
        if tt.available is not None
        else tt
        for tt in event.ticket_types
    )
    return evolve(event, ticket_types=ticket_types)


class CheckoutService:
    """Checkout service."""

    def __init__(
        self,
        db: AsyncSession,
        config: Config,
        store: DatabasePaymentRecordStore,
        coupon_service: CouponService,
        payment_service: PaymentService,
        ticket_service: TicketService,
    ):
        self.db = db
        self.config = config
        self.store = store
        self.coupon_service = coupon_service
        self.payment_service = payment_service
        self.ticket_service = ticket_service

    async def get_checkout(
        self, id: UUID, *, lock: bool = False
    ) -> Optional[CheckoutEntity]:
        """Get a checkout by ID."""
        return await self.db.get(CheckoutEntity, id, with_for_update=lock)

    async def get_available_event(self, event: Event) -> Event:
        """Get the event with current ticket availability."""
        if all(tt.available is None for tt in event.ticket_types):
            return event
        issued = await self.ticket_service.count_issued(event.id)
        return apply_availability(event, issued)

    async def create_checkout(
        self, event: Event, customer: CustomerIdentity
    ) -> tuple[CheckoutEntity, CheckoutData]:
        """Start a checkout session.

        Returns:
            A pair of the new :class:`CheckoutEntity` and its :class:`CheckoutData`.
        """
        data = create_checkout_data(event, customer)
        entity = CheckoutEntity.create(data)
        self.db.add(entity)
        await self.db.flush()

        audit_log.bind(type=AuditLogType.checkout_create, checkout=entity.id).info(
            f"Checkout {entity.id} created for {event.id}"
        )
        return entity, data

    def get_coupon_resolver(self) -> CouponResolver:
        """Get a :class:`CouponResolver` for stored and configured coupons."""
        return CouponResolver(
            [self.coupon_service, StaticCouponSource(self.config.coupons)]
        )

    def get_orchestrator(
        self, entity: CheckoutEntity, event: Event
    ) -> CheckoutOrchestrator:
        """Get a :class:`CheckoutOrchestrator` that saves changes to ``entity``.

        The caller must close the orchestrator.
        """
        initiator = PaymentInitiator(
            self.config.app_id,
            self.payment_service.get_gateway(),
            recorder=partial(self.payment_service.record_payment, entity.id),
        )

        return CheckoutOrchestrator(
            entity.get_data(),
            event=event,
            config=self.config.payment,
            coupon_resolver=self.get_coupon_resolver(),
            initiator=initiator,
            store=self.store,
            on_change=partial(self._save, entity),
        )

    async def abandon_checkout(self, entity: CheckoutEntity) -> bool:
        """Abandon a checkout.

        Returns:
            Whether a change was made.
        """
        changed = entity.abandon()
        if changed:
            audit_log.bind(type=AuditLogType.checkout_abandon, checkout=entity.id).info(
                f"Checkout {entity.id} abandoned"
            )
        return changed

    async def _save(self, entity: CheckoutEntity, data: CheckoutData):
        entity.set_data(data)
        if data.is_processing_payment:
            # make the in-flight request visible before calling the gateway
            await self.db.commit()
        else:
            await self.db.flush()
