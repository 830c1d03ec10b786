from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from crm_fields.fields.defaults import SUPPORTED_MODULES, default_fields
from crm_fields.fields.persistence import FieldRegistryPersistence
from crm_fields.fields.schemas import (
    CUSTOM_FIELDS_KEY,
    CustomFieldUsage,
    DeleteOutcome,
    FieldDefinition,
    FieldDraft,
    FieldUpdate,
    field_definition_adapter,
)
from crm_fields.metrics import observe_field_mutation


logger = logging.getLogger("app.fields.registry")

DEFAULT_CUSTOM_FIELD_CAP = 25
_SLUG_RE = re.compile(r"[^0-9a-zA-Z]+")


def _slugify(label: str) -> str:
    slug = _SLUG_RE.sub("_", label).strip("_").lower()
    if not slug:
        return "custom_field"
    if not slug[0].isalpha():
        return f"field_{slug}"
    return slug


def _normalize_module(module: str, definitions: Iterable[FieldDefinition]) -> list[FieldDefinition]:
    unique: list[FieldDefinition] = []
    seen: set[str] = set()
    for definition in definitions:
        if definition.id in seen:
            logger.warning(
                "fields.snapshot.duplicate_id",
                extra={"entity_module": module, "field_id": definition.id},
            )
            continue
        seen.add(definition.id)
        unique.append(definition)

    ranked = sorted(enumerate(unique), key=lambda item: (item[1].order, item[0]))
    return [
        definition.model_copy(update={"order": position, "module": module}, deep=True)
        for position, (_, definition) in enumerate(ranked, start=1)
    ]


class FieldRegistry:
    """Per-module ordered collection of field definitions.

    Ids are unique within a module and ``order`` values are unique across all
    of a module's fields, so the visible subset always sorts without ties.
    Every successful mutation re-persists the whole mapping. Unknown modules
    and ids are no-ops.
    """

    def __init__(
        self,
        persistence: FieldRegistryPersistence | None = None,
        *,
        custom_field_cap: int = DEFAULT_CUSTOM_FIELD_CAP,
        initial: Mapping[str, Sequence[FieldDefinition]] | None = None,
    ) -> None:
        self._persistence = persistence
        self.custom_field_cap = custom_field_cap
        if initial is not None:
            loaded: Mapping[str, Sequence[FieldDefinition]] = initial
        elif persistence is not None:
            loaded = persistence.load()
        else:
            loaded = default_fields()
        self._fields = self._hydrate(loaded)

    def _hydrate(self, loaded: Mapping[str, Sequence[FieldDefinition]]) -> dict[str, list[FieldDefinition]]:
        defaults = default_fields()
        hydrated: dict[str, list[FieldDefinition]] = {}
        for module in SUPPORTED_MODULES:
            if module in loaded:
                hydrated[module] = _normalize_module(module, loaded[module])
            else:
                hydrated[module] = defaults[module]
        for module, definitions in loaded.items():
            if module not in hydrated:
                hydrated[module] = _normalize_module(module, definitions)
        return hydrated

    # Reads

    def modules(self) -> list[str]:
        return list(self._fields)

    def has_module(self, module: str) -> bool:
        return module in self._fields

    def get_fields(self, module: str) -> list[FieldDefinition]:
        return [definition.model_copy(deep=True) for definition in self._fields.get(module, [])]

    def get_visible_fields(self, module: str) -> list[FieldDefinition]:
        return [definition for definition in self.get_fields(module) if definition.visible]

    def get_hidden_fields(self, module: str) -> list[FieldDefinition]:
        return [definition for definition in self.get_fields(module) if not definition.visible]

    def get_field(self, module: str, field_id: str) -> FieldDefinition | None:
        index = self._index_of(module, field_id)
        if index is None:
            return None
        return self._fields[module][index].model_copy(deep=True)

    def snapshot(self) -> dict[str, list[FieldDefinition]]:
        return {module: self.get_fields(module) for module in self._fields}

    def custom_field_usage(self, module: str) -> CustomFieldUsage | None:
        definitions = self._fields.get(module)
        if definitions is None:
            return None
        used = sum(1 for definition in definitions if definition.is_custom)
        return CustomFieldUsage(module=module, used=used, cap=self.custom_field_cap)

    # Mutations

    def add_field(self, module: str, draft: FieldDraft | Mapping[str, Any]) -> FieldDefinition | None:
        definitions = self._fields.get(module)
        if definitions is None:
            self._log_unknown(module, None, "add")
            return None
        if not isinstance(draft, FieldDraft):
            draft = FieldDraft.model_validate(draft)

        raw: dict[str, Any] = {
            "id": self._generate_id(definitions),
            "name": self._unique_name(definitions, draft.name or _slugify(draft.label)),
            "label": draft.label,
            "type": draft.type,
            "required": draft.required,
            "visible": draft.visible,
            "editable": draft.editable,
            "order": max((definition.order for definition in definitions), default=0) + 1,
            "isCustom": True,
            "module": module,
        }
        if draft.options is not None:
            raw["options"] = list(draft.options)

        definition = field_definition_adapter.validate_python(raw)
        definitions.append(definition)
        self._commit(module, definition.id, "add")
        return definition.model_copy(deep=True)

    def update_field(
        self,
        module: str,
        field_id: str,
        updates: FieldUpdate | Mapping[str, Any],
    ) -> FieldDefinition | None:
        index = self._index_of(module, field_id)
        if index is None:
            self._log_unknown(module, field_id, "update")
            return None
        if not isinstance(updates, FieldUpdate):
            updates = FieldUpdate.model_validate(updates)

        definitions = self._fields[module]
        current = definitions[index]
        changes = updates.changes()
        if "name" in changes:
            if not current.is_custom:
                # Built-in names are record attribute keys and stay fixed.
                changes.pop("name")
            elif changes["name"] != current.name:
                others = [item for item in definitions if item.id != current.id]
                changes["name"] = self._unique_name(others, changes["name"])
        if not changes:
            return current.model_copy(deep=True)

        merged = current.model_dump(by_alias=True)
        merged.update(changes)
        updated = field_definition_adapter.validate_python(merged)
        definitions[index] = updated
        self._commit(module, field_id, "update")
        return updated.model_copy(deep=True)

    def delete_field(self, module: str, field_id: str) -> DeleteOutcome:
        index = self._index_of(module, field_id)
        if index is None:
            self._log_unknown(module, field_id, "delete")
            return DeleteOutcome.NOT_FOUND

        definitions = self._fields[module]
        if not definitions[index].is_custom:
            logger.warning(
                "fields.delete_rejected",
                extra={"entity_module": module, "field_id": field_id, "operation": "delete"},
            )
            return DeleteOutcome.NOT_DELETABLE

        del definitions[index]
        self._commit(module, field_id, "delete")
        return DeleteOutcome.DELETED

    def toggle_field_visibility(self, module: str, field_id: str) -> bool | None:
        index = self._index_of(module, field_id)
        if index is None:
            self._log_unknown(module, field_id, "toggle_visibility")
            return None

        definitions = self._fields[module]
        visible = not definitions[index].visible
        definitions[index] = definitions[index].model_copy(update={"visible": visible})
        self._commit(module, field_id, "toggle_visibility")
        return visible

    def reorder_fields(
        self,
        module: str,
        ordered: Sequence[str | FieldDefinition],
    ) -> list[FieldDefinition] | None:
        """Stamp ``order = index + 1`` following ``ordered``.

        Items are matched by id against the stored definitions. Fields missing
        from ``ordered`` keep their relative order after the given ones.
        """
        definitions = self._fields.get(module)
        if definitions is None:
            self._log_unknown(module, None, "reorder")
            return None

        by_id = {definition.id: definition for definition in definitions}
        sequence: list[FieldDefinition] = []
        seen: set[str] = set()
        for item in ordered:
            field_id = item if isinstance(item, str) else item.id
            if field_id in by_id and field_id not in seen:
                seen.add(field_id)
                sequence.append(by_id[field_id])
        sequence.extend(definition for definition in definitions if definition.id not in seen)

        self._fields[module] = [
            definition.model_copy(update={"order": position}) for position, definition in enumerate(sequence, start=1)
        ]
        self._commit(module, None, "reorder")
        return self.get_fields(module)

    def register_module(self, module: str, definitions: Sequence[FieldDefinition] = ()) -> bool:
        if module in self._fields:
            return False
        self._fields[module] = _normalize_module(module, definitions)
        self._commit(module, None, "register_module")
        return True

    def reset_to_defaults(self, module: str | None = None) -> list[str]:
        defaults = default_fields(module)
        if not defaults:
            self._log_unknown(module or "", None, "reset")
            return []
        self._fields.update(defaults)
        self._commit(module or "*", None, "reset")
        return list(defaults)

    def persist(self) -> None:
        if self._persistence is not None:
            self._persistence.save(self._fields)

    # Internals

    def _index_of(self, module: str, field_id: str) -> int | None:
        for index, definition in enumerate(self._fields.get(module, [])):
            if definition.id == field_id:
                return index
        return None

    @staticmethod
    def _generate_id(definitions: Sequence[FieldDefinition]) -> str:
        existing = {definition.id for definition in definitions}
        while True:
            candidate = f"custom_{uuid.uuid4().hex[:12]}"
            if candidate not in existing:
                return candidate

    @staticmethod
    def _unique_name(definitions: Sequence[FieldDefinition], base: str) -> str:
        taken = {definition.name for definition in definitions} | {definition.id for definition in definitions}
        taken.add(CUSTOM_FIELDS_KEY)
        if base not in taken:
            return base
        suffix = 2
        while f"{base}_{suffix}" in taken:
            suffix += 1
        return f"{base}_{suffix}"

    def _commit(self, module: str, field_id: str | None, operation: str) -> None:
        observe_field_mutation(module, operation)
        logger.info(
            "fields.mutation",
            extra={"entity_module": module, "field_id": field_id, "operation": operation},
        )
        self.persist()

    @staticmethod
    def _log_unknown(module: str, field_id: str | None, operation: str) -> None:
        logger.debug(
            "fields.unknown_target",
            extra={"entity_module": module, "field_id": field_id, "operation": operation},
        )
