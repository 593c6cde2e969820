"""Change event schema published by the journal system-of-record."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError, field_validator

from pet_context.core.logging import get_logger

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
# Epoch milliseconds first, so numeric strings are never read as seconds.
_TIMESTAMP = TypeAdapter(int | datetime)
_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


class EventType(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"

    @classmethod
    def parse(cls, raw: str | None) -> "EventType | None":
        """Resolve ``CREATED`` as well as the producer's ``DIARY_CREATED`` form."""
        if not raw:
            return None
        value = raw.strip().upper()
        if value.startswith("DIARY_"):
            value = value[len("DIARY_") :]
        try:
            return cls(value)
        except ValueError:
            return None


class ChangeEvent(BaseModel):
    """Immutable notification about a create/update/delete on a journal entry."""

    event_type: str = Field(validation_alias=AliasChoices("eventType", "event_type"))
    record_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("recordId", "diaryId", "record_id"),
    )
    owner_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ownerId", "userId", "owner_id"),
    )
    subject_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("subjectId", "petId", "subject_id"),
    )
    text: str | None = Field(default=None, validation_alias=AliasChoices("text", "content"))
    media_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("mediaRef", "imageUrl", "media_ref"),
    )
    timestamp: int | None = Field(
        default=None,
        validation_alias=AliasChoices("timestamp", "createdAt"),
    )

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }

    @field_validator("record_id", "owner_id", "subject_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("identifiers must be strings or integers")
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> int | None:
        """Accept epoch milliseconds or an ISO-8601 datetime; anything else becomes ``None``."""
        if value is None:
            return None
        if isinstance(value, str):
            value = _EXTRA_FRACTION.sub(r"\1", value.strip())
        try:
            parsed = _TIMESTAMP.validate_python(value)
        except ValidationError:
            logger.warning("Ignoring unparseable change event timestamp %r", value)
            return None
        if isinstance(parsed, datetime):
            return _datetime_to_ms(parsed)
        return parsed

    @property
    def kind(self) -> EventType | None:
        return EventType.parse(self.event_type)


def _datetime_to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


__all__ = ["EventType", "ChangeEvent"]
