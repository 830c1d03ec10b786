from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_fields.core.config import Settings
from crm_fields.core.database import Base
from crm_fields.fields.defaults import default_fields
from crm_fields.fields.models import FieldRegistrySnapshot
from crm_fields.fields.persistence import DEFAULT_SNAPSHOT_KEY, FieldRegistryPersistence
from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.schemas import FieldDraft
from crm_fields.fields.storage import InMemoryKeyValueStore, SqlKeyValueStore
from crm_fields.main import build_snapshot_store


class FailingStore(InMemoryKeyValueStore):
    def save(self, key: str, blob: str) -> None:
        raise RuntimeError("disk full")


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


def test_missing_snapshot_loads_defaults(store: InMemoryKeyValueStore) -> None:
    persistence = FieldRegistryPersistence(store)

    assert persistence.key == DEFAULT_SNAPSHOT_KEY
    assert persistence.load() == default_fields()


@pytest.mark.parametrize("blob", ["{not json", '{"contacts": [{"id": 1}]}', "[]"])
def test_corrupt_snapshot_falls_back_to_defaults(blob: str, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    persistence = FieldRegistryPersistence(InMemoryKeyValueStore({DEFAULT_SNAPSHOT_KEY: blob}))

    assert persistence.load() == default_fields()

    records = [record for record in caplog.records if record.name == "app.fields.persistence"]
    assert any(
        record.getMessage() == "fields.snapshot.corrupt" and getattr(record, "snapshot_key", None) == DEFAULT_SNAPSHOT_KEY
        for record in records
    )


def test_snapshot_uses_wire_field_names(store: InMemoryKeyValueStore) -> None:
    registry = FieldRegistry(FieldRegistryPersistence(store))
    registry.add_field("companies", FieldDraft(label="Tier", type="select", options=["Gold", "Silver"]))

    payload = json.loads(store.load(DEFAULT_SNAPSHOT_KEY))

    assert set(payload) == {"contacts", "companies", "products"}
    tier = payload["companies"][-1]
    assert tier["isCustom"] is True
    assert tier["type"] == "select"
    assert tier["options"] == ["Gold", "Silver"]
    assert "is_custom" not in tier


def test_mutations_survive_reload(store: InMemoryKeyValueStore) -> None:
    registry = FieldRegistry(FieldRegistryPersistence(store))
    created = registry.add_field("contacts", FieldDraft(label="Budget", type="number"))
    registry.toggle_field_visibility("contacts", "title")
    registry.reorder_fields("companies", ["website", "name"])
    assert created is not None

    reloaded = FieldRegistry(FieldRegistryPersistence(store))

    assert reloaded.get_field("contacts", created.id) == created
    assert reloaded.get_field("contacts", "title").visible is False
    assert [definition.id for definition in reloaded.get_fields("companies")][:2] == ["website", "name"]


def test_snapshot_missing_a_module_is_seeded_from_defaults(store: InMemoryKeyValueStore) -> None:
    partial = FieldRegistryPersistence(store).serialize({"contacts": default_fields("contacts")["contacts"][:3]})
    store.save(DEFAULT_SNAPSHOT_KEY, partial)

    registry = FieldRegistry(FieldRegistryPersistence(store))

    assert [definition.id for definition in registry.get_fields("contacts")] == ["firstName", "lastName", "email"]
    assert registry.get_fields("companies") == default_fields("companies")["companies"]
    assert registry.get_fields("products") == default_fields("products")["products"]


def test_sql_store_round_trip(session_factory: sessionmaker[Session]) -> None:
    store = SqlKeyValueStore(session_factory)
    assert store.load(DEFAULT_SNAPSHOT_KEY) is None

    store.save(DEFAULT_SNAPSHOT_KEY, "first")
    store.save(DEFAULT_SNAPSHOT_KEY, "second")

    assert store.load(DEFAULT_SNAPSHOT_KEY) == "second"
    with session_factory() as session:
        rows = session.scalars(select(FieldRegistrySnapshot)).all()
    assert len(rows) == 1
    assert rows[0].key == DEFAULT_SNAPSHOT_KEY


def test_registry_persists_through_sql_store(session_factory: sessionmaker[Session]) -> None:
    registry = FieldRegistry(FieldRegistryPersistence(SqlKeyValueStore(session_factory)))
    created = registry.add_field("products", FieldDraft(label="Warranty Months", type="number"))
    assert created is not None

    reloaded = FieldRegistry(FieldRegistryPersistence(SqlKeyValueStore(session_factory)))

    definition = reloaded.get_field("products", created.id)
    assert definition is not None
    assert definition.name == "warranty_months"
    assert definition.type == "number"


def test_write_behind_lands_latest_snapshot(store: InMemoryKeyValueStore) -> None:
    persistence = FieldRegistryPersistence(store, write_behind=True)
    registry = FieldRegistry(persistence)
    assert persistence.write_behind is True

    for label in ("Region", "Tier", "Segment"):
        registry.add_field("companies", FieldDraft(label=label))
    persistence.flush()

    payload = json.loads(store.load(DEFAULT_SNAPSHOT_KEY))
    assert [item["label"] for item in payload["companies"]][-3:] == ["Region", "Tier", "Segment"]

    persistence.close()
    assert persistence.write_behind is False


def test_write_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR)
    registry = FieldRegistry(FieldRegistryPersistence(FailingStore()))

    created = registry.add_field("contacts", FieldDraft(label="Budget"))

    assert created is not None
    assert registry.get_field("contacts", created.id) is not None
    assert any(
        record.name == "app.fields.persistence" and record.getMessage() == "fields.snapshot.write_failed"
        for record in caplog.records
    )


def test_snapshot_store_follows_configured_backend() -> None:
    assert isinstance(build_snapshot_store(Settings(field_store_backend="memory")), InMemoryKeyValueStore)

    sql_store = build_snapshot_store(
        Settings(field_store_backend="sql", database_url="sqlite+pysqlite:///:memory:")
    )
    assert isinstance(sql_store, SqlKeyValueStore)
    sql_store.save(DEFAULT_SNAPSHOT_KEY, "{}")
    assert sql_store.load(DEFAULT_SNAPSHOT_KEY) == "{}"

    with pytest.raises(ValueError):
        build_snapshot_store(Settings(field_store_backend="redis"))


def test_truncated_snapshot_with_invalid_bytes_restarts_on_defaults(
    store: InMemoryKeyValueStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry = FieldRegistry(FieldRegistryPersistence(store))
    registry.add_field("companies", FieldDraft(label="Budget", type="number"))
    blob = store.load(DEFAULT_SNAPSHOT_KEY)
    assert isinstance(blob, str)
    store.save(DEFAULT_SNAPSHOT_KEY, blob.encode("utf-8")[: len(blob) // 2] + b"\xff\xfe\x80")

    caplog.set_level(logging.WARNING)
    restarted = FieldRegistry(FieldRegistryPersistence(store))

    assert restarted.snapshot() == default_fields()
    assert any(
        record.name == "app.fields.persistence" and record.getMessage() == "fields.snapshot.corrupt"
        for record in caplog.records
    )
