"""Payment service."""
from typing import Optional
from uuid import UUID

from loguru import logger
from naks.checkout.entities.checkout import CheckoutEntity
from naks.checkout.entities.payment import PaymentEntity
from naks.checkout.log import AuditLogType, audit_log
from naks.checkout.models.config import Config
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    PaymentStatus,
    PaymentUpdate,
)
from naks.checkout.payment.base import PaymentGateway, PaymentStateError
from naks.checkout.payment.config import PaymentGateways
from naks.checkout.services.coupon import CouponService
from naks.checkout.services.notification import PaymentNotificationService
from naks.checkout.services.ticket import TicketService
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


class PaymentService:
    """Payment service.

    Payment records are only written here: when payment is requested, and when a
    gateway reports a status.
    """

    def __init__(
        self,
        db: AsyncSession,
        config: Config,
        gateways: PaymentGateways,
        notification_service: PaymentNotificationService,
        ticket_service: TicketService,
        coupon_service: CouponService,
    ):
        self.db = db
        self.config = config
        self.gateways = gateways
        self.notification_service = notification_service
        self.ticket_service = ticket_service
        self.coupon_service = coupon_service

    def get_gateway(self, id: Optional[str] = None) -> Optional[PaymentGateway]:
        """Get a gateway by ID, or the configured gateway."""
        return self.gateways.get_gateway(
            id if id is not None else self.config.payment.gateway
        )

    async def get_payment(
        self, id: str, *, lock: bool = False
    ) -> Optional[PaymentEntity]:
        """Get a payment by ID."""
        return await self.db.get(PaymentEntity, id, with_for_update=lock)

    async def get_payment_by_provider_request_id(
        self, provider_request_id: str, *, lock: bool = False
    ) -> Optional[PaymentEntity]:
        """Get a payment by the gateway's request ID."""
        q = select(PaymentEntity).where(
            PaymentEntity.provider_request_id == provider_request_id
        )
        if lock:
            q = q.with_for_update()
        res = await self.db.execute(q)
        return res.scalar_one_or_none()

    async def record_payment(
        self,
        checkout_id: UUID,
        request: InitiationRequest,
        result: InitiationResult,
    ) -> PaymentEntity:
        """Create the payment record of a successful initiation."""
        entity = PaymentEntity.create(
            checkout_id,
            self.config.payment.gateway,
            self.config.payment.currency,
            request,
            result,
        )
        self.db.add(entity)
        await self.db.flush()
        return entity

    async def apply_update(
        self, service_id: str, update: PaymentUpdate
    ) -> Optional[PaymentEntity]:
        """Apply a status update reported by a gateway.

        A completed payment closes its checkout and issues the tickets. Watchers are
        notified once the transaction commits.

        Returns:
            The updated :class:`PaymentEntity`, or None if it was not found.
        """
        entity = await self.get_payment_by_provider_request_id(
            update.provider_request_id, lock=True
        )
        if entity is None:
            return None

        if entity.service != service_id:
            raise PaymentStateError(f"Payment {entity.id} is not from {service_id}")

        changed = entity.apply_update(
            update.status,
            mpesa_receipt_number=update.mpesa_receipt_number,
            error_reason=update.error_reason,
        )
        if not changed:
            return entity

        if entity.status == PaymentStatus.completed:
            await self._complete(entity)
        elif entity.status == PaymentStatus.failed:
            audit_log.bind(type=AuditLogType.payment_fail, payment=entity.id).info(
                f"Payment {entity.id} failed: {entity.error_reason}"
            )

        self.notification_service.add_notification(self.db, entity.id)
        return entity

    async def _complete(self, entity: PaymentEntity):
        audit_log.bind(type=AuditLogType.payment_complete, payment=entity.id).success(
            f"Payment {entity.id} of {entity.amount} {entity.currency} completed, "
            f"receipt {entity.mpesa_receipt_number}"
        )

        checkout = await self.db.get(
            CheckoutEntity, entity.checkout_id, with_for_update=True
        )
        if checkout is None:
            logger.error(f"Checkout for payment {entity.id} not found")
            return

        checkout.close()
        data = checkout.get_data()
        await self.ticket_service.issue_tickets(checkout, data, entity.id)
        if data.coupon_code is not None:
            await self.coupon_service.record_use(data.coupon_code)
