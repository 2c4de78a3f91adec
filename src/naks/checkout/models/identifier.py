"""Identifier validation."""
import re

PATTERN = re.compile(r"^(?![-_])[a-zA-Z0-9-_]+(?<![-_])$")


def validate_identifier(a, i, v):
    """Attrs validator for an event or ticket type identifier."""
    if not isinstance(v, str):
        raise TypeError(f"Invalid identifier: {v}")
    if not PATTERN.match(v):
        raise ValueError(f"Invalid identifier: {v}")
