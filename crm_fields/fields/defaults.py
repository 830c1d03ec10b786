from __future__ import annotations

from typing import Any

from crm_fields.fields.schemas import FieldDefinition, field_definition_adapter

SUPPORTED_MODULES: tuple[str, ...] = ("contacts", "companies", "products")

# (name, label, type, required, visible, options)
_BUILTIN_FIELDS: dict[str, list[tuple[str, str, str, bool, bool, list[str] | None]]] = {
    "contacts": [
        ("firstName", "First Name", "text", True, True, None),
        ("lastName", "Last Name", "text", True, True, None),
        ("email", "Email (Unique)", "email", True, True, None),
        ("phone", "Phone", "phone", False, True, None),
        ("company", "Company Name", "text", False, True, None),
        ("title", "Title", "text", False, True, None),
        ("status", "Status", "select", True, True, ["Hot Lead", "Warm Lead", "Cold Lead", "Customer", "Prospect"]),
        ("mobile", "Mobile", "phone", False, False, None),
        ("homePhone", "Home Phone", "phone", False, False, None),
        ("emailOptOut", "Email Opt Out", "select", False, False, ["Yes", "No"]),
        ("description", "Description", "textarea", False, False, None),
    ],
    "companies": [
        ("name", "Company Name", "text", True, True, None),
        ("phone", "Phone", "phone", False, True, None),
        ("website", "Website", "text", False, True, None),
        ("email", "Email", "email", False, True, None),
        ("description", "Description", "textarea", False, True, None),
    ],
    "products": [
        ("productName", "Product Name (Unique)", "text", True, True, None),
        ("productCode", "Product Code", "text", False, True, None),
        ("productCategory", "Product Category", "select", False, True, []),
        ("unitPrice", "Unit Price", "number", False, True, None),
        ("description", "Description", "textarea", False, True, None),
        ("productActive", "Product Active", "select", False, True, ["Yes", "No"]),
    ],
}


def _build_module_defaults(module: str) -> list[FieldDefinition]:
    definitions: list[FieldDefinition] = []
    for index, (name, label, field_type, required, visible, options) in enumerate(_BUILTIN_FIELDS[module], start=1):
        raw: dict[str, Any] = {
            "id": name,
            "name": name,
            "label": label,
            "type": field_type,
            "required": required,
            "visible": visible,
            "editable": True,
            "order": index,
            "isCustom": False,
            "module": module,
        }
        if options is not None:
            raw["options"] = list(options)
        definitions.append(field_definition_adapter.validate_python(raw))
    return definitions


def default_fields(module: str | None = None) -> dict[str, list[FieldDefinition]]:
    """Fresh copies of the built-in baseline, for one module or all of them."""
    modules = SUPPORTED_MODULES if module is None else (module,)
    return {name: _build_module_defaults(name) for name in modules if name in _BUILTIN_FIELDS}
