from __future__ import annotations

from datetime import date

import pytest

from crm_fields.fields.binder import RecordBinder
from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.schemas import FieldDraft


@pytest.fixture()
def registry() -> FieldRegistry:
    return FieldRegistry()


@pytest.fixture()
def binder(registry: FieldRegistry) -> RecordBinder:
    return RecordBinder(registry)


def _contact(**overrides: object) -> dict[str, object]:
    draft: dict[str, object] = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "status": "Hot Lead",
    }
    draft.update(overrides)
    return draft


def test_valid_contact_binds_visible_fields(binder: RecordBinder) -> None:
    result = binder.bind("contacts", _contact(phone="555-0100"))

    assert result.validation.valid is True
    assert result.payload == {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "phone": "555-0100",
        "status": "Hot Lead",
    }


def test_required_fields_report_label(binder: RecordBinder) -> None:
    result = binder.validate("contacts", _contact(firstName="  ", lastName=None))

    assert result.valid is False
    assert result.errors == {
        "firstName": "First Name is required",
        "lastName": "Last Name is required",
    }


def test_invalid_email_is_rejected(binder: RecordBinder) -> None:
    result = binder.validate("companies", {"name": "Acme", "email": "not-an-email"})

    assert result.errors == {"email": "Please enter a valid email"}


def test_optional_empty_values_pass(binder: RecordBinder) -> None:
    result = binder.validate("companies", {"name": "Acme", "email": "", "phone": None})

    assert result.valid is True


def test_custom_values_nest_under_custom_fields(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.add_field("companies", FieldDraft(label="Budget", type="number"))

    result = binder.bind("companies", {"name": "Acme", "budget": "500"})

    assert result.validation.valid is True
    assert result.payload == {"name": "Acme", "customFields": {"budget": "500"}}


def test_custom_values_accepted_from_nested_map(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.add_field("companies", FieldDraft(label="Budget", type="number"))

    result = binder.bind("companies", {"name": "Acme", "customFields": {"budget": 750}})

    assert result.payload == {"name": "Acme", "customFields": {"budget": 750}}


def test_payload_omits_custom_fields_when_none_bound(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.add_field("companies", FieldDraft(label="Budget", type="number"))

    result = binder.bind("companies", {"name": "Acme"})

    assert result.payload == {"name": "Acme"}


def test_hidden_and_unknown_keys_are_dropped(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.toggle_field_visibility("contacts", "title")

    result = binder.bind("contacts", _contact(mobile="555-0199", title="CTO", legacyScore=12))

    assert result.payload is not None
    assert "mobile" not in result.payload
    assert "title" not in result.payload
    assert "legacyScore" not in result.payload


def test_non_editable_fields_are_skipped(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.update_field("contacts", "email", {"editable": False})

    result = binder.bind("contacts", _contact(email="broken"))

    assert result.validation.valid is True
    assert "email" not in result.payload


def test_number_and_date_validation(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.add_field("products", FieldDraft(label="Launch Date", type="date"))

    invalid = binder.validate("products", {"productName": "Widget", "unitPrice": "abc", "launch_date": "31/02/2024"})
    assert invalid.errors == {
        "unitPrice": "Please enter a valid number for unit price",
        "launch_date": "Please enter a valid date for launch date",
    }

    valid = binder.validate("products", {"productName": "Widget", "unitPrice": "19.99", "launch_date": "2024-02-29"})
    assert valid.valid is True
    assert binder.validate("products", {"productName": "Widget", "launch_date": date(2024, 1, 1)}).valid is True


@pytest.mark.parametrize("value", [True, "nan", "inf", "1e999", "1_000", "\u0661\u0662\u0663", "12abc", [1]])
def test_number_rejects_non_numeric_values(binder: RecordBinder, value: object) -> None:
    result = binder.validate("products", {"productName": "Widget", "unitPrice": value})

    assert "unitPrice" in result.errors


def test_select_options_enforced_only_when_enabled(registry: FieldRegistry) -> None:
    draft = _contact(status="Bogus")

    assert RecordBinder(registry).validate("contacts", draft).valid is True

    strict = RecordBinder(registry, enforce_select_options=True).validate("contacts", draft)
    assert strict.errors == {"status": "Status must be one of: Hot Lead, Warm Lead, Cold Lead, Customer, Prospect"}


def test_invalid_draft_has_no_payload(binder: RecordBinder) -> None:
    result = binder.bind("contacts", _contact(email="nope"))

    assert result.validation.valid is False
    assert result.validation.errors == {"email": "Please enter a valid email (unique)"}
    assert result.payload is None
    assert "email" not in binder.validate("contacts", _contact(email="a@b.com")).errors


def test_form_values_default_to_empty_strings(registry: FieldRegistry, binder: RecordBinder) -> None:
    registry.add_field("companies", FieldDraft(label="Budget", type="number"))

    values = binder.form_values("companies", {"name": "Acme", "customFields": {"budget": 10}, "legacy": "x"})

    assert values == {
        "name": "Acme",
        "phone": "",
        "website": "",
        "email": "",
        "description": "",
        "budget": 10,
    }
    assert binder.form_values("companies", None)["name"] == ""


def test_unknown_module_binds_nothing(binder: RecordBinder) -> None:
    result = binder.bind("deals", {"stage": "Won"})

    assert result.validation.valid is True
    assert result.payload == {}


@pytest.mark.parametrize("value", ["1000", " -12.5 ", ".5", "3.", "1e3", 42, 1.5])
def test_number_accepts_plain_decimal_notation(binder: RecordBinder, value: object) -> None:
    result = binder.validate("products", {"productName": "Widget", "unitPrice": value})

    assert "unitPrice" not in result.errors
