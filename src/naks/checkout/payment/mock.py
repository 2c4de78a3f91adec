"""Mock payment gateway."""
import uuid
from typing import Any, Optional

import httpx
from attrs import evolve
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    PaymentStatus,
)
from naks.checkout.payment.base import (
    CallbackRequest,
    CallbackResult,
    PaymentGateway,
)
from naks.checkout.payment.mpesa import parse_status_update


class MockGateway(PaymentGateway):
    """Mock payment gateway.

    Accepts every request. Numbers listed in ``reject_phone_numbers`` are
    rejected the way a provider would reject them.
    """

    id = "mock"
    name = "Mock"
    supports_callbacks = True

    def __init__(self, reject_phone_numbers: frozenset[str] = frozenset()):
        self.reject_phone_numbers = reject_phone_numbers

    async def initiate(self, request: InitiationRequest) -> InitiationResult:
        if request.phone_number in self.reject_phone_numbers:
            return InitiationResult.failure("The subscriber is not reachable", "1037")

        return InitiationResult(
            True,
            payment_id=str(uuid.uuid4()),
            provider_request_id=f"ws_CO_{uuid.uuid4().hex[:20]}",
        )

    def handle_callback(self, request: CallbackRequest) -> CallbackResult:
        update = parse_status_update(request.json_object())
        # receipts are made up for completed payments
        if update.status == PaymentStatus.completed and not update.mpesa_receipt_number:
            update = evolve(
                update, mpesa_receipt_number=uuid.uuid4().hex[:10].upper()
            )
        return CallbackResult.acknowledge(update, {"accepted": True})


def create_mock_gateway(
    config: dict[str, Any], client: httpx.AsyncClient
) -> Optional[MockGateway]:
    """Factory to create the :class:`MockGateway`."""
    return MockGateway(frozenset(config.get("reject_phone_numbers", ())))
