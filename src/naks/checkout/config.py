"""Config module."""
from collections.abc import Sequence
from pathlib import Path

from attr import frozen
from loguru import logger
from naks.checkout.models.config import Config
from naks.checkout.models.event import Event, EventConfig
from naks.checkout.serialization import get_config_converter
from ruamel.yaml import YAML

yaml = YAML(typ="safe")


@frozen
class CommandLineConfig:
    """Command line config settings."""

    port: int
    bind: str
    root_path: str
    workers: int
    debug: bool
    reload: bool
    insecure: bool
    config: Path
    events: Path


def load_config(path: Path) -> Config:
    """Load the main configuration from a YAML file."""
    doc = yaml.load(path)
    config = get_config_converter().structure(doc, Config)

    if config.payment.gateway not in config.payment.services:
        logger.warning(
            f"Payment gateway {config.payment.gateway!r} has no service settings"
        )

    return config


def load_event_config(path: Path) -> EventConfig:
    """Load the event catalog.

    Raises:
        ValueError: If event IDs or ticket type IDs are repeated.
    """
    doc = yaml.load(path)
    events = get_config_converter().structure(doc, Sequence[Event])
    return EventConfig(events)
