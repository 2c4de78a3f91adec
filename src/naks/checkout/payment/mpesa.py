"""M-Pesa STK push gateway."""
from __future__ import annotations

import hmac
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
from attrs import field, frozen
from loguru import logger
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    PaymentStatus,
    PaymentUpdate,
)
from naks.checkout.money import round_amount
from naks.checkout.payment.base import (
    CallbackRequest,
    CallbackResult,
    PaymentGateway,
    PaymentGatewayError,
    ValidationError,
)
from naks.checkout.serialization import get_config_converter

CALLBACK_TOKEN_HEADER = b"x-callback-token"

ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}
"""Acknowledgement body expected by Daraja."""


@frozen
class MpesaConfig:
    """M-Pesa gateway configuration."""

    initiate_url: str
    """The URL of the STK push initiation endpoint."""

    callback_token: str = field(repr=False)
    """Shared secret the status callback must present."""

    api_key: Optional[str] = field(default=None, repr=False)
    """Bearer token sent with initiation requests."""


class MpesaGateway(PaymentGateway):
    """M-Pesa STK push via the payment gateway endpoint."""

    id = "mpesa"
    name = "M-Pesa"
    supports_callbacks = True
    config: MpesaConfig

    def __init__(self, config: MpesaConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    def _get_body(self, request: InitiationRequest) -> dict[str, Any]:
        return {
            "appId": request.app_id,
            "phoneNumber": request.phone_number,
            "amount": str(round_amount(request.amount)),
            "accountReference": request.account_reference,
            "eventId": request.event_id,
            "lineItems": [
                {
                    "ticketTypeId": li.ticket_type_id,
                    "name": li.name,
                    "unitPrice": str(round_amount(li.unit_price)),
                    "quantity": li.quantity,
                }
                for li in request.line_items
            ],
            "customerEmail": request.customer_email,
            "customerName": request.customer_name,
        }

    async def initiate(self, request: InitiationRequest) -> InitiationResult:
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        try:
            res = await self.client.post(
                self.config.initiate_url, json=self._get_body(request), headers=headers
            )
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Gateway request failed: {e}") from e

        try:
            data = res.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            if res.is_success:
                raise PaymentGatewayError(
                    f"Invalid gateway response (status {res.status_code})"
                )
            return InitiationResult.failure(None, str(res.status_code))

        if res.is_success and data.get("success") is True:
            payment_id = data.get("paymentId")
            if not payment_id:
                raise PaymentGatewayError("Gateway response is missing paymentId")
            return InitiationResult(
                True,
                payment_id=str(payment_id),
                provider_request_id=_optional_str(data.get("providerRequestId")),
            )

        logger.debug(f"Gateway rejected payment request: {data}")
        return InitiationResult.failure(
            _optional_str(data.get("message")),
            _optional_str(data.get("providerErrorCode")),
        )

    def handle_callback(self, request: CallbackRequest) -> CallbackResult:
        """Handle a Daraja STK callback or a status update from the relay."""
        if not self._check_token(request):
            raise ValidationError("Invalid callback token")

        body = request.json_object()
        if "Body" in body:
            update = parse_stk_callback(body)
        else:
            update = parse_status_update(body)

        return CallbackResult.acknowledge(update, ACCEPTED)

    def _check_token(self, request: CallbackRequest) -> bool:
        token = request.headers.get(CALLBACK_TOKEN_HEADER)
        if token is None:
            query = parse_qs(urlsplit(request.url).query)
            tokens = query.get(b"token")
            token = tokens[0] if tokens else None

        if token is None:
            return False

        return hmac.compare_digest(token, self.config.callback_token.encode())


def _optional_str(v: object) -> Optional[str]:
    return str(v) if v is not None and v != "" else None


def parse_stk_callback(body: dict[str, Any]) -> PaymentUpdate:
    """Parse a Daraja STK push callback.

    Raises:
        ValidationError: If the body is not a valid callback.
    """
    try:
        callback = body["Body"]["stkCallback"]
        request_id = str(callback["CheckoutRequestID"])
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Invalid STK callback") from e

    result_desc = _optional_str(callback.get("ResultDesc"))

    if result_code != 0:
        return PaymentUpdate(
            provider_request_id=request_id,
            status=PaymentStatus.failed,
            error_reason=result_desc,
            data=body,
        )

    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    receipt = next(
        (
            _optional_str(item.get("Value"))
            for item in items
            if isinstance(item, dict) and item.get("Name") == "MpesaReceiptNumber"
        ),
        None,
    )

    return PaymentUpdate(
        provider_request_id=request_id,
        status=PaymentStatus.completed,
        mpesa_receipt_number=receipt,
        data=body,
    )


def parse_status_update(body: dict[str, Any]) -> PaymentUpdate:
    """Parse a status update relayed by the gateway.

    Raises:
        ValidationError: If the body is not a valid update.
    """
    request_id = body.get("providerRequestId")
    status = body.get("status")
    if not isinstance(request_id, str) or not isinstance(status, str):
        raise ValidationError("Invalid status update")

    try:
        parsed_status = PaymentStatus.parse(status)
    except ValueError as e:
        raise ValidationError(f"Invalid status: {status}") from e

    return PaymentUpdate(
        provider_request_id=request_id,
        status=parsed_status,
        mpesa_receipt_number=_optional_str(body.get("mpesaReceiptNumber")),
        error_reason=_optional_str(body.get("errorReason")),
        data=body,
    )


def create_mpesa_gateway(
    config: dict[str, Any], client: httpx.AsyncClient
) -> Optional[MpesaGateway]:
    """Factory to create the :class:`MpesaGateway`."""
    try:
        config_obj = get_config_converter().structure(config, MpesaConfig)
    except Exception as e:
        logger.opt(exception=e).warning("Failed to load M-Pesa configuration")
        return None

    return MpesaGateway(config_obj, client)
