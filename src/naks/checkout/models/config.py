"""Config models."""
from collections.abc import Sequence
from typing import Any

from attrs import field, frozen
from naks.checkout.models.coupon import Coupon


@frozen
class DatabaseConfig:
    url: str = field(repr=False)
    """The database URL."""

    pool_size: int = 10
    """Connections kept open in the pool."""

    echo: bool = False
    """Whether to log every SQL statement."""


@frozen
class AuthConfig:
    signing_key: str = field(repr=False)
    """The key used to verify identity provider tokens."""

    allowed_origins: Sequence[str] = ()
    """The allowed CORS origins."""


PaymentServiceConfig = dict[str, Any]


@frozen
class PaymentConfig:
    currency: str = "KES"
    """The currency code."""

    gateway: str = "mpesa"
    """The ID of the gateway used to initiate payments."""

    status_timeout: float = 300.0
    """Seconds to wait for a terminal payment status before reporting it unknown."""

    poll_interval: float = 3.0
    """Seconds between payment record polls."""

    request_timeout: float = 30.0
    """Seconds to wait for a gateway response."""

    account_reference_prefix: str = "NAKS"
    """Prefix of the account reference shown on the payer's statement."""

    services: dict[str, PaymentServiceConfig] = {}
    """Per-gateway payment config."""


@frozen
class Config:
    """The main config class."""

    app_id: str
    """The application/tenant identifier."""

    database: DatabaseConfig
    auth: AuthConfig
    payment: PaymentConfig = PaymentConfig()

    coupons: Sequence[Coupon] = ()
    """Static coupon rules, checked after the database."""
