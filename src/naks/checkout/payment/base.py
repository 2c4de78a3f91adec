"""Payment gateway interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Optional

import orjson
from attrs import frozen
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    PaymentUpdate,
)


class PaymentServiceError(RuntimeError):
    """Base class for payment errors."""


class PaymentGatewayError(PaymentServiceError):
    """Raised when a gateway could not be reached or sent an unusable response."""


class PaymentStateError(PaymentServiceError):
    """Raised when a payment record cannot make a transition."""


class ValidationError(ValueError, PaymentServiceError):
    """Raised when a callback is malformed or not authentic."""


@frozen
class CallbackRequest:
    """A status callback received from a gateway."""

    body: bytes
    url: bytes
    headers: Mapping[bytes, bytes]
    """Request headers, with lower-case names."""

    def json_object(self) -> dict[str, Any]:
        """Parse the body as a JSON object.

        Raises:
            ValidationError: If the body is not a JSON object.
        """
        content_type = self.headers.get(b"content-type", b"")
        if content_type.partition(b";")[0].strip() != b"application/json":
            raise ValidationError("Invalid content-type")

        try:
            obj = orjson.loads(self.body)
        except orjson.JSONDecodeError:
            raise ValidationError("Could not parse body")

        if not isinstance(obj, dict):
            raise ValidationError("Not a valid JSON object")
        return obj


@frozen
class CallbackResult:
    """The outcome of handling a callback, and the reply to send the gateway."""

    update: Optional[PaymentUpdate] = None
    body: Optional[bytes] = None
    content_type: bytes = b"application/json"
    status: int = 200

    @classmethod
    def acknowledge(
        cls, update: Optional[PaymentUpdate], body: object
    ) -> CallbackResult:
        """Reply with a JSON acknowledgement."""
        return cls(update=update, body=orjson.dumps(body))


class PaymentGateway(ABC):
    """Payment gateway base class."""

    @property
    @abstractmethod
    def id(self) -> str:
        """The gateway ID."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """The human-readable gateway name."""
        ...

    @property
    def supports_callbacks(self) -> bool:
        """Whether the gateway posts status callbacks."""
        return False

    @abstractmethod
    async def initiate(self, request: InitiationRequest) -> InitiationResult:
        """Ask the gateway to prompt the payer.

        A rejection by the provider is returned as an unsuccessful
        :class:`InitiationResult`.

        Raises:
            PaymentGatewayError: If the gateway could not be reached.
        """
        ...

    def handle_callback(self, request: CallbackRequest) -> CallbackResult:
        """Parse and verify a status callback.

        Raises:
            ValidationError: If the callback is malformed or not authentic.
        """
        raise NotImplementedError
