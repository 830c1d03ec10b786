from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field, model_validator


FieldType = Literal["text", "email", "phone", "number", "date", "select", "textarea"]

CUSTOM_FIELDS_KEY = "customFields"
FIELD_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

FIELD_TYPE_LABELS: dict[str, str] = {
    "text": "Single Line",
    "email": "Email (Unique)",
    "phone": "Phone",
    "number": "Number",
    "date": "Date",
    "select": "Lookup",
    "textarea": "Multi-line (Large)",
}


class _FieldDefinitionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    label: str
    required: bool = False
    visible: bool = True
    editable: bool = True
    order: int
    is_custom: bool = Field(default=False, alias="isCustom")
    module: str


class TextField(_FieldDefinitionBase):
    type: Literal["text"] = "text"


class EmailField(_FieldDefinitionBase):
    type: Literal["email"] = "email"


class PhoneField(_FieldDefinitionBase):
    type: Literal["phone"] = "phone"


class NumberField(_FieldDefinitionBase):
    type: Literal["number"] = "number"


class DateField(_FieldDefinitionBase):
    type: Literal["date"] = "date"


class TextareaField(_FieldDefinitionBase):
    type: Literal["textarea"] = "textarea"


class SelectField(_FieldDefinitionBase):
    type: Literal["select"] = "select"
    options: list[str] = Field(default_factory=list)


FieldDefinition = Annotated[
    Union[TextField, EmailField, PhoneField, NumberField, DateField, SelectField, TextareaField],
    Field(discriminator="type"),
]

field_definition_adapter: TypeAdapter[Any] = TypeAdapter(FieldDefinition)
field_snapshot_adapter: TypeAdapter[Any] = TypeAdapter(dict[str, list[FieldDefinition]])


def _clean_label(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("label is required")
    return cleaned


def _clean_name(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not FIELD_NAME_RE.match(cleaned):
        raise ValueError("name must start with a letter and contain only letters, digits or underscores")
    if cleaned == CUSTOM_FIELDS_KEY:
        raise ValueError(f"{CUSTOM_FIELDS_KEY} is reserved")
    return cleaned


def _clean_options(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    cleaned = [item.strip() for item in value]
    if any(not item for item in cleaned):
        raise ValueError("options must be non-empty strings")
    return cleaned


class FieldDraft(BaseModel):
    """Payload of the "create field" dialog.

    ``id``, ``order``, ``module`` and ``isCustom`` are assigned by the registry.
    """

    label: str = Field(min_length=1)
    type: FieldType = "text"
    name: str | None = None
    required: bool = False
    visible: bool = True
    editable: bool = True
    options: list[str] | None = None

    @model_validator(mode="after")
    def validate_draft(self) -> "FieldDraft":
        self.label = _clean_label(self.label) or ""
        self.name = _clean_name(self.name)
        self.options = _clean_options(self.options)
        if self.type == "select":
            if self.options is None:
                self.options = []
        elif self.options:
            raise ValueError("options only supported for select")
        return self


class FieldUpdate(BaseModel):
    name: str | None = None
    label: str | None = None
    type: FieldType | None = None
    required: bool | None = None
    visible: bool | None = None
    editable: bool | None = None
    options: list[str] | None = None

    @model_validator(mode="after")
    def validate_update(self) -> "FieldUpdate":
        self.label = _clean_label(self.label)
        self.name = _clean_name(self.name)
        self.options = _clean_options(self.options)
        return self

    def changes(self) -> dict[str, Any]:
        return {key: value for key, value in self.model_dump(exclude_unset=True).items() if value is not None}


class DeleteOutcome(StrEnum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    NOT_DELETABLE = "not_deletable"


class CustomFieldUsage(BaseModel):
    module: str
    used: int
    cap: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining(self) -> int:
        return max(self.cap - self.used, 0)

    @property
    def at_capacity(self) -> bool:
        return self.used >= self.cap


class ValidationResult(BaseModel):
    errors: dict[str, str] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valid(self) -> bool:
        return not self.errors


class BindResult(BaseModel):
    validation: ValidationResult
    payload: dict[str, Any] | None = None


class FieldReorderRequest(BaseModel):
    field_ids: list[str]


class FieldMoveRequest(BaseModel):
    target_index: int | None = None


class FieldSectionsRead(BaseModel):
    sections: dict[str, list[FieldDefinition]]
    hidden: list[FieldDefinition]
    usage: CustomFieldUsage
