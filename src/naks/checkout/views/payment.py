"""Payment views."""
from blacksheep import Content, HTTPException, Request, Response
from blacksheep.exceptions import NotFound
from blacksheep.server.openapi.common import ResponseInfo
from loguru import logger
from naks.checkout.app import app
from naks.checkout.auth import User
from naks.checkout.database import transaction
from naks.checkout.docs import docs, docs_helper
from naks.checkout.payment.base import (
    CallbackRequest,
    PaymentStateError,
    ValidationError,
)
from naks.checkout.services.checkout import CheckoutService
from naks.checkout.services.payment import PaymentService
from naks.checkout.util import check_not_found
from naks.checkout.views.checkout import check_checkout_access
from naks.checkout.views.responses import PaymentResponse


@app.router.get("/payments/{id}")
@docs_helper(
    response_type=PaymentResponse,
    response_summary="The payment record",
    tags=["Payment"],
)
async def read_payment(
    id: str,
    payment_service: PaymentService,
    checkout_service: CheckoutService,
    user: User,
) -> PaymentResponse:
    """Get a payment record."""
    payment = check_not_found(await payment_service.get_payment(id))
    checkout = check_not_found(await checkout_service.get_checkout(payment.checkout_id))
    check_checkout_access(checkout, user)
    return PaymentResponse.create(payment)


@app.router.post("/payments/{service}/callback")
@docs(
    responses={
        200: ResponseInfo("The acknowledgement for the gateway"),
        404: ResponseInfo("The payment was not found"),
        422: ResponseInfo("The callback was not valid"),
    },
    tags=["Payment"],
)
@transaction
async def payment_callback(
    service: str,
    request: Request,
    payment_service: PaymentService,
) -> Response:
    """Receive a payment status callback from a gateway."""
    gateway = payment_service.get_gateway(service)
    if gateway is None or not gateway.supports_callbacks:
        raise NotFound

    callback = CallbackRequest(
        body=await request.read() or b"",
        url=request.url.value,
        headers={k.lower(): v for k, v in request.headers.items()},
    )

    try:
        result = gateway.handle_callback(callback)
    except ValidationError as e:
        logger.debug(f"Invalid {service} callback: {e}")
        raise HTTPException(422, str(e))

    if result.update is not None:
        try:
            updated = await payment_service.apply_update(service, result.update)
        except PaymentStateError as e:
            raise HTTPException(409, str(e))

        if updated is None:
            logger.warning(
                f"{service} callback for unknown request "
                f"{result.update.provider_request_id}"
            )
            raise NotFound

    return Response(
        result.status,
        content=Content(result.content_type, result.body)
        if result.body is not None
        else None,
    )
