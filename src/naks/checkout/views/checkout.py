"""Checkout views."""
from collections.abc import Mapping
from contextlib import contextmanager
from typing import Optional
from uuid import UUID

from attrs import Factory, field, frozen
from blacksheep import Content, HTTPException, Response
from blacksheep.exceptions import NotFound
from blacksheep.server.openapi.common import ContentInfo, ResponseInfo
from loguru import logger
from naks.checkout.app import app
from naks.checkout.auth import User, get_customer_identity
from naks.checkout.database import transaction
from naks.checkout.docs import docs, docs_helper
from naks.checkout.entities.checkout import CheckoutEntity
from naks.checkout.models.checkout import CheckoutData, PaymentMethod
from naks.checkout.models.config import Config
from naks.checkout.models.customer import DeliveryMethod
from naks.checkout.models.event import Event, EventConfig
from naks.checkout.orchestrator import CheckoutOrchestrator, CheckoutStateError
from naks.checkout.serialization import get_converter
from naks.checkout.services.checkout import CheckoutService
from naks.checkout.services.ticket import TicketService
from naks.checkout.util import check_not_found
from naks.checkout.views.event import get_visible_event
from naks.checkout.views.parameters import AttrsBody, Wait
from naks.checkout.views.responses import (
    CheckoutResponse,
    CouponResultResponse,
    FieldErrorsResponse,
    TicketResponse,
)
from sqlalchemy.ext.asyncio import AsyncSession


@frozen(kw_only=True)
class CreateCheckoutRequest:
    """Request body to start a checkout."""

    event_id: str
    tickets: dict[str, int] = field(default=Factory(dict))
    """Initial quantities by ticket type ID."""


@frozen(kw_only=True)
class ChangeQuantityRequest:
    """Request body to change the quantity of a ticket type."""

    ticket_type_id: str
    delta: int


@frozen(kw_only=True)
class CustomerInfoRequest:
    """Request body to set the customer details."""

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    ticket_delivery_method: Optional[DeliveryMethod] = None


@frozen(kw_only=True)
class PaymentDetailsRequest:
    """Request body to set the payment details."""

    mpesa_phone_number: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.mpesa_stk


@frozen(kw_only=True)
class ApplyCouponRequest:
    """Request body to apply a coupon."""

    code: Optional[str] = None


def _checkout_docs(summary: str):
    return docs(
        responses={
            200: ResponseInfo(summary, content=[ContentInfo(CheckoutResponse)]),
            409: ResponseInfo("The checkout can't be changed now"),
            422: ResponseInfo(
                "The checkout, with field errors",
                content=[ContentInfo(CheckoutResponse)],
            ),
        },
        tags=["Checkout"],
    )


@contextmanager
def _state_errors():
    try:
        yield
    except CheckoutStateError as e:
        raise HTTPException(409, str(e))


def _checkout_response(
    entity: CheckoutEntity,
    data: CheckoutData,
    config: Config,
    errors: Optional[Mapping[str, str]] = None,
) -> Response:
    body = CheckoutResponse.create(entity, data, config.payment.currency, errors)
    return Response(
        422 if errors else 200,
        content=Content(b"application/json", get_converter().dumps(body)),
    )


def check_checkout_access(entity: CheckoutEntity, user: Optional[User]):
    if entity.user_id is None:
        return
    if user is None or (user.id != entity.user_id and not user.is_admin):
        raise NotFound


async def _get_checkout(
    id: UUID,
    user: Optional[User],
    checkout_service: CheckoutService,
    *,
    lock: bool = True,
) -> CheckoutEntity:
    entity = check_not_found(await checkout_service.get_checkout(id, lock=lock))
    check_checkout_access(entity, user)
    return entity


async def _get_event(
    entity: CheckoutEntity,
    event_config: EventConfig,
    checkout_service: CheckoutService,
) -> Event:
    event = check_not_found(event_config.get_event(entity.event_id))
    return await checkout_service.get_available_event(event)


async def _get_open_orchestrator(
    id: UUID,
    user: Optional[User],
    event_config: EventConfig,
    checkout_service: CheckoutService,
) -> tuple[CheckoutEntity, CheckoutOrchestrator]:
    entity = await _get_checkout(id, user, checkout_service)
    if not entity.is_open:
        raise HTTPException(409, "Checkout is not open")
    event = await _get_event(entity, event_config, checkout_service)
    orchestrator = checkout_service.get_orchestrator(entity, event)
    if await orchestrator.expire_stale_initiation():
        # kept even if the requested change is refused
        await checkout_service.db.commit()
    return entity, orchestrator


@app.router.post("/checkouts")
@_checkout_docs("The new checkout")
@transaction
async def create_checkout(
    body: AttrsBody[CreateCheckoutRequest],
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    db: AsyncSession,
    user: User,
) -> Response:
    """Start a checkout for an event."""
    event = get_visible_event(event_config, body.value.event_id, user)
    if not event.is_open_to(user):
        raise HTTPException(409, "Tickets for this event are not on sale")

    event = await checkout_service.get_available_event(event)
    entity, _ = await checkout_service.create_checkout(
        event, get_customer_identity(user)
    )

    orchestrator = checkout_service.get_orchestrator(entity, event)
    errors = {}
    for ticket_type_id, quantity in body.value.tickets.items():
        errors.update(await orchestrator.change_quantity(ticket_type_id, quantity))

    if errors:
        await db.rollback()
        return Response(
            422,
            content=Content(
                b"application/json",
                get_converter().dumps(FieldErrorsResponse(errors)),
            ),
        )

    return _checkout_response(entity, orchestrator.data, config)


@app.router.get("/checkouts/{id}")
@_checkout_docs("The checkout")
@transaction
async def read_checkout(
    id: UUID,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Get a checkout.

    A checkout awaiting payment picks up the latest payment status.
    """
    entity = await _get_checkout(id, user, checkout_service, lock=False)
    event = await _get_event(entity, event_config, checkout_service)
    orchestrator = checkout_service.get_orchestrator(entity, event)
    try:
        await orchestrator.wait_for_outcome()
        return _checkout_response(entity, orchestrator.data, config)
    finally:
        orchestrator.close()


@app.router.delete("/checkouts/{id}")
@docs(
    responses={
        204: ResponseInfo("The checkout was abandoned"),
        409: ResponseInfo("Payment was already requested"),
    },
    tags=["Checkout"],
)
@transaction
async def abandon_checkout(
    id: UUID,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    user: User,
) -> Response:
    """Abandon a checkout."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        orchestrator.abandon()
    await checkout_service.abandon_checkout(entity)
    return Response(204)


@app.router.post("/checkouts/{id}/tickets")
@_checkout_docs("The updated checkout")
@transaction
async def change_ticket_quantity(
    id: UUID,
    body: AttrsBody[ChangeQuantityRequest],
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Change the quantity of a ticket type."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        errors = await orchestrator.change_quantity(
            body.value.ticket_type_id, body.value.delta
        )
    return _checkout_response(entity, orchestrator.data, config, errors)


@app.router.delete("/checkouts/{id}/tickets/{ticket_type_id}")
@_checkout_docs("The updated checkout")
@transaction
async def remove_ticket(
    id: UUID,
    ticket_type_id: str,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Remove a ticket type from the order."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        await orchestrator.remove_ticket(ticket_type_id)
    return _checkout_response(entity, orchestrator.data, config)


@app.router.put("/checkouts/{id}/customer")
@_checkout_docs("The updated checkout")
@transaction
async def set_customer_info(
    id: UUID,
    body: AttrsBody[CustomerInfoRequest],
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Set the customer details."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        errors = await orchestrator.set_customer_info(
            body.value.customer_name,
            body.value.customer_email,
            body.value.ticket_delivery_method,
        )
    return _checkout_response(entity, orchestrator.data, config, errors)


@app.router.put("/checkouts/{id}/payment-details")
@_checkout_docs("The updated checkout")
@transaction
async def set_payment_details(
    id: UUID,
    body: AttrsBody[PaymentDetailsRequest],
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Set the payment method and M-Pesa phone number."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        errors = await orchestrator.set_payment_details(
            body.value.mpesa_phone_number, body.value.payment_method
        )
    return _checkout_response(entity, orchestrator.data, config, errors)


@app.router.post("/checkouts/{id}/coupon")
@docs_helper(
    response_type=CouponResultResponse,
    response_summary="The coupon result",
    tags=["Checkout"],
)
@transaction
async def apply_coupon(
    id: UUID,
    body: AttrsBody[ApplyCouponRequest],
    checkout_service: CheckoutService,
    event_config: EventConfig,
    user: User,
) -> CouponResultResponse:
    """Apply a coupon code to a checkout.

    A rejected code leaves the checkout unchanged.
    """
    _, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        result = await orchestrator.apply_coupon(body.value.code)
    return CouponResultResponse.create(result)


@app.router.delete("/checkouts/{id}/coupon")
@_checkout_docs("The updated checkout")
@transaction
async def remove_coupon(
    id: UUID,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Remove the coupon from a checkout."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        await orchestrator.remove_coupon()
    return _checkout_response(entity, orchestrator.data, config)


@app.router.post("/checkouts/{id}/next")
@_checkout_docs("The updated checkout")
@transaction
async def next_step(
    id: UUID,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Move to the next step.

    Moving on from the payment details step requests payment.
    """
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    try:
        return await _pay_or_advance(entity, orchestrator, config, pay=False)
    finally:
        orchestrator.close()


@app.router.post("/checkouts/{id}/back")
@_checkout_docs("The updated checkout")
@transaction
async def previous_step(
    id: UUID,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Move to the previous step."""
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    with _state_errors():
        await orchestrator.back()
    return _checkout_response(entity, orchestrator.data, config)


@app.router.post("/checkouts/{id}/pay")
@_checkout_docs("The checkout, awaiting confirmation or with a failure notice")
@transaction
async def pay(
    id: UUID,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
) -> Response:
    """Request an M-Pesa payment prompt for the checkout.

    Payment is only requested once per checkout.
    """
    entity, orchestrator = await _get_open_orchestrator(
        id, user, event_config, checkout_service
    )
    try:
        return await _pay_or_advance(entity, orchestrator, config, pay=True)
    finally:
        orchestrator.close()


async def _pay_or_advance(
    entity: CheckoutEntity,
    orchestrator: CheckoutOrchestrator,
    config: Config,
    pay: bool,
) -> Response:
    try:
        with _state_errors():
            errors = await (orchestrator.pay() if pay else orchestrator.next())
    except HTTPException:
        raise
    except Exception:
        # the initiating status was committed before the gateway call
        logger.opt(exception=True).error(f"Requesting payment for {entity.id} failed")
        raise

    return _checkout_response(entity, orchestrator.data, config, errors)


@app.router.get("/checkouts/{id}/status")
@_checkout_docs("The checkout with the latest payment status")
@transaction
async def read_payment_status(
    id: UUID,
    wait: Wait,
    checkout_service: CheckoutService,
    event_config: EventConfig,
    config: Config,
    user: User,
    db: AsyncSession,
) -> Response:
    """Get the payment status of a checkout.

    Waits up to ``wait`` seconds for the payment to complete or fail.
    """
    entity = await _get_checkout(id, user, checkout_service, lock=False)
    event = await _get_event(entity, event_config, checkout_service)
    orchestrator = checkout_service.get_orchestrator(entity, event)
    if wait.value > 0:
        # return the connection to the pool while waiting
        await db.commit()
    try:
        await orchestrator.wait_for_outcome(wait.value)
        return _checkout_response(entity, orchestrator.data, config)
    finally:
        orchestrator.close()


@app.router.get("/checkouts/{id}/tickets")
@docs_helper(
    response_type=list[TicketResponse],
    response_summary="The issued tickets",
    tags=["Checkout"],
)
async def list_checkout_tickets(
    id: UUID,
    checkout_service: CheckoutService,
    ticket_service: TicketService,
    user: User,
) -> list[TicketResponse]:
    """List the tickets issued for a checkout."""
    entity = await _get_checkout(id, user, checkout_service, lock=False)
    tickets = await ticket_service.list_tickets(entity.id)
    return [TicketResponse.create(t) for t in tickets]
