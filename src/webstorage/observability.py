"""Refresh log schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

REFRESH_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "namespace",
        "debounce",
        "outcome",
        "entries_written",
        "values_missing",
        "trigger_id",
        "refreshed_at",
    ],
    "properties": {
        "namespace": {"type": "string", "minLength": 1},
        "debounce": {"type": "boolean"},
        "outcome": {"type": "string", "enum": ["refreshed", "debounced", "contended", "empty"]},
        "entries_written": {"type": "integer", "minimum": 0},
        "values_missing": {"type": "integer", "minimum": 0},
        "trigger_id": {"type": ["string", "null"]},
        "refreshed_at": {"type": "string", "format": "date-time"},
    },
    "additionalProperties": False,
}

_validator = Draft7Validator(REFRESH_SCHEMA)


def validate_refresh(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"refresh log validation failed: {messages}")


@dataclass
class RefreshLogRecord:
    namespace: str
    debounce: bool
    outcome: str
    entries_written: int = 0
    values_missing: int = 0
    trigger_id: Optional[str] = None
    refreshed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "namespace": self.namespace,
            "debounce": self.debounce,
            "outcome": self.outcome,
            "entries_written": self.entries_written,
            "values_missing": self.values_missing,
            "trigger_id": self.trigger_id,
            "refreshed_at": self.refreshed_at,
        }
        validate_refresh(payload)
        return payload
