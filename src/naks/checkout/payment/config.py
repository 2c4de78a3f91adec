"""Payment gateway registry."""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Callable, Optional

import httpx
from importlib_metadata import entry_points
from loguru import logger
from naks.checkout.models.config import PaymentConfig
from naks.checkout.payment.base import PaymentGateway

PaymentGatewayFactory = Callable[
    [dict[str, Any], httpx.AsyncClient], Optional[PaymentGateway]
]
"""Factory function to configure and return a :class:`PaymentGateway`.

May return None if the gateway is not available.
"""

GROUP = "naks.checkout.payment_gateways"

INSECURE_GATEWAYS = frozenset(("mock",))
"""Gateways that accept unauthenticated callbacks, loaded only in insecure mode."""


class PaymentGateways:
    """Class for looking up/creating :class:`PaymentGateway` classes."""

    gateways: dict[str, PaymentGateway]
    entry_points: dict[str, Any]

    def __init__(self):
        self.gateways = {}
        self.entry_points = {}

    def get_gateway_exists(self, id: str) -> bool:
        """Get whether a gateway ID is installed."""
        return id in self.entry_points

    def load_gateway(self, id: str, config: dict[str, Any], client: httpx.AsyncClient):
        """Load a :class:`PaymentGateway`.

        Args:
            id: The gateway ID.
            config: The gateway configuration data.
            client: The HTTP client.
        """
        ep = self.entry_points[id]
        factory: PaymentGatewayFactory = ep.load()
        gateway = factory(config, client)
        if gateway is not None:
            self.gateways[id] = gateway
            logger.info(f"Loaded payment gateway {id}")

    def add_gateway(self, gateway: PaymentGateway):
        """Add a configured :class:`PaymentGateway`."""
        self.gateways[gateway.id] = gateway

    def get_available_gateways(self) -> Iterable[str]:
        """Get an iterable of available gateway IDs."""
        return self.gateways.keys()

    def get_gateway(self, id: str) -> Optional[PaymentGateway]:
        """Get a :class:`PaymentGateway`.

        Args:
            id: The gateway ID.

        Returns:
            The gateway, or None if not available.
        """
        return self.gateways.get(id)


def load_gateways(
    config: PaymentConfig, client: httpx.AsyncClient, insecure: bool = False
) -> PaymentGateways:
    """Load :class:`PaymentGateway` classes.

    Gateways in :data:`INSECURE_GATEWAYS` are skipped unless ``insecure`` is set.
    """
    gateways = PaymentGateways()

    eps = entry_points(group=GROUP)
    for ep in eps:
        gateways.entry_points[ep.name] = ep

    for gateway_id, gateway_config in config.services.items():
        if not gateways.get_gateway_exists(gateway_id):
            logger.info(f"Payment gateway {gateway_id!r} not available")
            continue

        if gateway_id in INSECURE_GATEWAYS and not insecure:
            logger.warning(
                f"Payment gateway {gateway_id!r} is only loaded with --insecure"
            )
            continue

        try:
            gateways.load_gateway(gateway_id, gateway_config, client)
        except Exception as e:
            logger.warning(f"Payment gateway {gateway_id} configuration failed: {e}")

    if gateways.get_gateway(config.gateway) is None:
        logger.warning(f"Payment gateway {config.gateway!r} is not configured")

    return gateways
