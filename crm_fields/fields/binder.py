from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.schemas import (
    CUSTOM_FIELDS_KEY,
    BindResult,
    FieldDefinition,
    SelectField,
    ValidationResult,
)


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$", re.ASCII)

_MISSING = object()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, str):
        text = value.strip()
        return bool(NUMBER_RE.match(text)) and math.isfinite(float(text))
    return False


def _is_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        pass
    try:
        datetime.fromisoformat(text)
        return True
    except ValueError:
        return False


def _draft_value(definition: FieldDefinition, draft: Mapping[str, Any]) -> Any:
    if definition.name in draft:
        return draft[definition.name]
    if definition.is_custom:
        custom_values = draft.get(CUSTOM_FIELDS_KEY)
        if isinstance(custom_values, Mapping) and definition.name in custom_values:
            return custom_values[definition.name]
    return _MISSING


class RecordBinder:
    """Validates draft records against the registry and shapes their payload.

    Only visible, editable fields take part; any other key in a draft is
    ignored, so stale keys from older forms are dropped rather than rejected.
    """

    def __init__(self, registry: FieldRegistry, *, enforce_select_options: bool = False) -> None:
        self.registry = registry
        self.enforce_select_options = enforce_select_options

    def bound_fields(self, module: str) -> list[FieldDefinition]:
        return [definition for definition in self.registry.get_visible_fields(module) if definition.editable]

    def validate(self, module: str, draft: Mapping[str, Any]) -> ValidationResult:
        errors: dict[str, str] = {}
        for definition in self.bound_fields(module):
            value = _draft_value(definition, draft)
            message = self._validate_value(definition, None if value is _MISSING else value)
            if message is not None:
                errors[definition.name] = message
        return ValidationResult(errors=errors)

    def build_payload(self, module: str, draft: Mapping[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        custom_values: dict[str, Any] = {}
        for definition in self.bound_fields(module):
            value = _draft_value(definition, draft)
            if value is _MISSING:
                continue
            if definition.is_custom:
                custom_values[definition.name] = value
            else:
                payload[definition.name] = value
        if custom_values:
            payload[CUSTOM_FIELDS_KEY] = custom_values
        return payload

    def bind(self, module: str, draft: Mapping[str, Any]) -> BindResult:
        validation = self.validate(module, draft)
        if not validation.valid:
            return BindResult(validation=validation, payload=None)
        return BindResult(validation=validation, payload=self.build_payload(module, draft))

    def form_values(self, module: str, record: Mapping[str, Any] | None) -> dict[str, Any]:
        """Initial edit-form values; missing attributes come back as ``""``."""
        record = record or {}
        custom_values = record.get(CUSTOM_FIELDS_KEY)
        if not isinstance(custom_values, Mapping):
            custom_values = {}

        values: dict[str, Any] = {}
        for definition in self.registry.get_visible_fields(module):
            source = custom_values if definition.is_custom else record
            value = source.get(definition.name)
            values[definition.name] = "" if value is None else value
        return values

    def _validate_value(self, definition: FieldDefinition, value: Any) -> str | None:
        label = definition.label
        if _is_empty(value):
            if definition.required:
                return f"{label} is required"
            return None

        if definition.type == "email":
            if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
                return f"Please enter a valid {label.lower()}"
        elif definition.type == "number":
            if not _is_number(value):
                return f"Please enter a valid number for {label.lower()}"
        elif definition.type == "date":
            if not _is_date(value):
                return f"Please enter a valid date for {label.lower()}"
        elif isinstance(definition, SelectField):
            if self.enforce_select_options and str(value) not in definition.options:
                return f"{label} must be one of: {', '.join(definition.options)}"
        return None
