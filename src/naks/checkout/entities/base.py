"""Declarative base and shared column types."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from naks.checkout.util import get_now
from sqlalchemy import JSON
from sqlalchemy import UUID as SqlUUID
from sqlalchemy import DateTime, MetaData, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, mapped_column

STRING_LENGTH = 300
"""Length of names, emails and messages."""

CODE_LENGTH = 16
"""Length of status values and short codes."""

EXTERNAL_ID_LENGTH = 64
"""Length of IDs assigned by a payment provider."""

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

JSONType = JSON().with_variant(JSONB(), "postgresql")

PKUUID = Annotated[UUID, mapped_column(primary_key=True, default=uuid.uuid4)]
"""Random UUID primary key."""

JSONData = Annotated[dict[str, Any], mapped_column(JSONType, default=dict)]
"""A JSON object, like a serialized model."""

JSONList = Annotated[list[Any], mapped_column(JSONType, nullable=False, default=list)]
"""A JSON array, like a log of changes."""

Created = Annotated[datetime, mapped_column(default=lambda: get_now())]
"""Timestamp set when the row is inserted."""


class Base(DeclarativeBase):
    """Entity base class."""

    metadata = metadata
    type_annotation_map = {
        UUID: SqlUUID(as_uuid=True),
        datetime: DateTime(timezone=True),
        str: String(STRING_LENGTH),
        # KES amounts with cents
        Decimal: Numeric(12, 2),
    }


def import_entities():
    """Import the entity modules so their tables are registered."""
    from naks.checkout.entities import checkout  # noqa
    from naks.checkout.entities import coupon  # noqa
    from naks.checkout.entities import payment  # noqa
    from naks.checkout.entities import ticket  # noqa
