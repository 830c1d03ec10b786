from __future__ import annotations

from threading import Lock
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from crm_fields.fields.models import FieldRegistrySnapshot, utcnow


class KeyValueStore(Protocol):
    """Durable blob storage keyed by string."""

    def load(self, key: str) -> str | bytes | None:
        ...

    def save(self, key: str, blob: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str | bytes] | None = None) -> None:
        self._blobs: dict[str, str | bytes] = dict(initial or {})
        self._lock = Lock()

    def load(self, key: str) -> str | bytes | None:
        with self._lock:
            return self._blobs.get(key)

    def save(self, key: str, blob: str) -> None:
        with self._lock:
            self._blobs[key] = blob


class SqlKeyValueStore:
    """One row per key in ``field_registry_snapshot``."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def load(self, key: str) -> str | None:
        with self._session_factory() as session:
            row = session.get(FieldRegistrySnapshot, key)
            return row.blob if row is not None else None

    def save(self, key: str, blob: str) -> None:
        with self._session_factory() as session:
            row = session.get(FieldRegistrySnapshot, key)
            if row is None:
                row = FieldRegistrySnapshot(key=key, blob=blob)
            else:
                row.blob = blob
                row.updated_at = utcnow()
            session.add(row)
            session.commit()
