"""Decoding of inbound change event payloads."""

from __future__ import annotations

from typing import Any, Mapping

import orjson
from pydantic import ValidationError

from pet_context.core.errors import MalformedEventError
from pet_context.models.events import ChangeEvent


def parse_change_event(payload: bytes | str | Mapping[str, Any]) -> ChangeEvent:
    """Decode a JSON payload (or an already decoded mapping) into a ChangeEvent."""
    if isinstance(payload, (bytes, bytearray, memoryview, str)):
        try:
            payload = orjson.loads(payload)
        except orjson.JSONDecodeError as exc:
            raise MalformedEventError(f"Event payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise MalformedEventError("Event payload must be a JSON object")
    try:
        return ChangeEvent.model_validate(dict(payload))
    except ValidationError as exc:
        raise MalformedEventError(_summarize(exc)) from exc


def _summarize(exc: ValidationError) -> str:
    problems = [
        f"{'.'.join(str(part) for part in error['loc']) or 'event'}: {error['msg']}"
        for error in exc.errors()
    ]
    return "Invalid change event (" + "; ".join(problems) + ")"


__all__ = ["parse_change_event"]
