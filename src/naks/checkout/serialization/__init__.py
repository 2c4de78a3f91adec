"""Serialization package."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from naks.checkout.serialization.common import CustomConverter


def get_config_converter() -> CustomConverter:
    """Get a :class:`Converter` for trusted data, like configuration files."""
    from naks.checkout.serialization.common import converter

    return converter


def get_converter() -> CustomConverter:
    """Get a :class:`Converter` suitable for validating external data."""
    from naks.checkout.serialization.data import converter

    return converter
