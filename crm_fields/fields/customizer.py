from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.schemas import (
    FIELD_TYPE_LABELS,
    CustomFieldUsage,
    DeleteOutcome,
    FieldDefinition,
    FieldDraft,
    FieldUpdate,
)


CUSTOM_SECTION = "Custom Fields"
OTHER_SECTION = "Other Fields"

DEFAULT_SECTIONS: dict[str, dict[str, tuple[str, ...]]] = {
    "contacts": {
        "Contact Information": ("firstName", "lastName", "title", "email", "phone", "company"),
        "Additional Information": ("mobile", "homePhone", "description"),
        "Preferences & Settings": ("emailOptOut", "status"),
    },
    "companies": {
        "Company Information": ("name", "email", "phone", "website"),
        "Additional Information": ("description",),
    },
    "products": {
        "Product Information": ("productName", "productCode", "productCategory", "unitPrice", "productActive"),
        "Additional Information": ("description",),
    },
}


class FieldCustomizerError(Exception):
    """Base error for rejected field editing gestures."""


class UnknownModuleError(FieldCustomizerError):
    def __init__(self, module: str) -> None:
        self.module = module
        super().__init__(f"unknown module: {module}")


class FieldNotFoundError(FieldCustomizerError):
    def __init__(self, module: str, field_id: str) -> None:
        self.module = module
        self.field_id = field_id
        super().__init__(f"field not found: {module}.{field_id}")


class FieldNotDeletableError(FieldCustomizerError):
    def __init__(self, module: str, field_id: str) -> None:
        self.module = module
        self.field_id = field_id
        super().__init__(f"built-in field cannot be deleted: {module}.{field_id}")


class FieldNameConflictError(FieldCustomizerError):
    def __init__(self, module: str, name: str) -> None:
        self.module = module
        self.name = name
        super().__init__(f"field name already in use: {module}.{name}")


class CustomFieldLimitError(FieldCustomizerError):
    def __init__(self, usage: CustomFieldUsage) -> None:
        self.usage = usage
        super().__init__(f"custom field limit reached for {usage.module}: {usage.used}/{usage.cap}")


@dataclass(frozen=True)
class PendingDeletion:
    module: str
    field_id: str
    label: str

    @property
    def prompt(self) -> str:
        return f'Permanently delete "{self.label}"? Values stored in this field will no longer be shown.'


class FieldCustomizer:
    """Editing surface for one module's fields.

    Translates add/edit/hide/show/delete and drag-and-drop gestures into
    registry calls. Visible fields are grouped into sections by field name;
    hidden fields form a searchable pick list.
    """

    def __init__(
        self,
        registry: FieldRegistry,
        module: str,
        *,
        sections: Mapping[str, Iterable[str]] | None = None,
        custom_section: str = CUSTOM_SECTION,
    ) -> None:
        if not registry.has_module(module):
            raise UnknownModuleError(module)
        self.registry = registry
        self.module = module
        layout = sections if sections is not None else DEFAULT_SECTIONS.get(module, {})
        self.sections: dict[str, frozenset[str]] = {name: frozenset(names) for name, names in layout.items()}
        self.custom_section = custom_section
        self._dragged_id: str | None = None

    # Projections

    def visible_sections(self) -> dict[str, list[FieldDefinition]]:
        grouped: dict[str, list[FieldDefinition]] = {name: [] for name in self.sections}
        grouped.setdefault(self.custom_section, [])
        other: list[FieldDefinition] = []
        for definition in self.registry.get_visible_fields(self.module):
            if definition.is_custom:
                grouped[self.custom_section].append(definition)
                continue
            section = next((name for name, names in self.sections.items() if definition.name in names), None)
            if section is None:
                other.append(definition)
            else:
                grouped[section].append(definition)

        result = {name: items for name, items in grouped.items() if items}
        if other:
            result[OTHER_SECTION] = other
        return result

    def hidden_fields(self, search: str = "") -> list[FieldDefinition]:
        needle = search.strip().lower()
        return [
            definition
            for definition in self.registry.get_hidden_fields(self.module)
            if needle in definition.label.lower()
        ]

    def usage(self) -> CustomFieldUsage:
        usage = self.registry.custom_field_usage(self.module)
        if usage is None:
            raise UnknownModuleError(self.module)
        return usage

    def available_actions(self, definition: FieldDefinition) -> tuple[str, ...]:
        actions = ["edit", "hide" if definition.visible else "show"]
        if definition.is_custom:
            actions.append("delete")
        return tuple(actions)

    @staticmethod
    def type_label(field_type: str) -> str:
        return FIELD_TYPE_LABELS.get(field_type, FIELD_TYPE_LABELS["text"])

    # Drag and drop

    @property
    def dragged_field_id(self) -> str | None:
        return self._dragged_id

    def start_drag(self, field_id: str) -> FieldDefinition:
        definition = self._require(field_id)
        self._dragged_id = definition.id
        return definition

    def cancel_drag(self) -> None:
        self._dragged_id = None

    def drop(self, target_index: int | None = None) -> list[FieldDefinition] | None:
        field_id = self._dragged_id
        self._dragged_id = None
        if field_id is None:
            return None
        return self.move_field(field_id, target_index)

    def move_field(self, field_id: str, target_index: int | None = None) -> list[FieldDefinition]:
        """Place a field in the visible sequence and return the new sequence.

        A visible field is spliced out of its old index and reinserted at
        ``target_index``. A hidden field is made visible and inserted at
        ``target_index``, or appended when no index is given.
        """
        definition = self._require(field_id)
        visible_ids = [item.id for item in self.registry.get_visible_fields(self.module)]
        hidden_ids = [item.id for item in self.registry.get_hidden_fields(self.module) if item.id != field_id]

        if definition.visible:
            if target_index is None:
                return self.registry.get_visible_fields(self.module)
            reordered = list(visible_ids)
            reordered.pop(reordered.index(field_id))
            reordered.insert(self._clamp(target_index, len(reordered)), field_id)
            if reordered == visible_ids:
                return self.registry.get_visible_fields(self.module)
        else:
            self.registry.update_field(self.module, field_id, FieldUpdate(visible=True))
            reordered = list(visible_ids)
            position = len(reordered) if target_index is None else self._clamp(target_index, len(reordered))
            reordered.insert(position, field_id)

        self.registry.reorder_fields(self.module, reordered + hidden_ids)
        return self.registry.get_visible_fields(self.module)

    # Visibility

    def remove_from_active(self, field_id: str) -> FieldDefinition:
        return self._set_visible(field_id, False)

    def show_field(self, field_id: str) -> FieldDefinition:
        return self._set_visible(field_id, True)

    # Create / edit / delete

    def create_field(self, draft: FieldDraft | Mapping[str, Any]) -> FieldDefinition:
        if not isinstance(draft, FieldDraft):
            draft = FieldDraft.model_validate(draft)
        usage = self.usage()
        if usage.at_capacity:
            raise CustomFieldLimitError(usage)
        if draft.name is not None:
            self._ensure_name_available(draft.name, exclude_id=None)

        created = self.registry.add_field(self.module, draft)
        if created is None:
            raise UnknownModuleError(self.module)
        return created

    def edit_field(self, field_id: str, updates: FieldUpdate | Mapping[str, Any]) -> FieldDefinition:
        if not isinstance(updates, FieldUpdate):
            updates = FieldUpdate.model_validate(updates)
        current = self._require(field_id)
        if updates.name is not None and current.is_custom and updates.name != current.name:
            self._ensure_name_available(updates.name, exclude_id=field_id)

        updated = self.registry.update_field(self.module, field_id, updates)
        if updated is None:
            raise FieldNotFoundError(self.module, field_id)
        return updated

    def request_delete(self, field_id: str) -> PendingDeletion:
        definition = self._require(field_id)
        if not definition.is_custom:
            raise FieldNotDeletableError(self.module, field_id)
        return PendingDeletion(module=self.module, field_id=definition.id, label=definition.label)

    def confirm_delete(self, pending: PendingDeletion) -> DeleteOutcome:
        outcome = self.registry.delete_field(pending.module, pending.field_id)
        if outcome is DeleteOutcome.NOT_FOUND:
            raise FieldNotFoundError(pending.module, pending.field_id)
        if outcome is DeleteOutcome.NOT_DELETABLE:
            raise FieldNotDeletableError(pending.module, pending.field_id)
        if self._dragged_id == pending.field_id:
            self._dragged_id = None
        return outcome

    def reset_to_defaults(self) -> list[FieldDefinition]:
        self._dragged_id = None
        self.registry.reset_to_defaults(self.module)
        return self.registry.get_fields(self.module)

    # Internals

    def _require(self, field_id: str) -> FieldDefinition:
        definition = self.registry.get_field(self.module, field_id)
        if definition is None:
            raise FieldNotFoundError(self.module, field_id)
        return definition

    def _set_visible(self, field_id: str, visible: bool) -> FieldDefinition:
        definition = self._require(field_id)
        if definition.visible == visible:
            return definition
        self.registry.toggle_field_visibility(self.module, field_id)
        return self._require(field_id)

    def _ensure_name_available(self, name: str, *, exclude_id: str | None) -> None:
        for definition in self.registry.get_fields(self.module):
            if definition.id == exclude_id:
                continue
            if name in (definition.name, definition.id):
                raise FieldNameConflictError(self.module, name)

    @staticmethod
    def _clamp(index: int, upper: int) -> int:
        return max(0, min(index, upper))
