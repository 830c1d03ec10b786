from __future__ import annotations

import contextvars
import logging
from collections.abc import Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor

from crm_fields.fields.defaults import default_fields
from crm_fields.fields.schemas import FieldDefinition, field_snapshot_adapter
from crm_fields.fields.storage import KeyValueStore
from crm_fields.metrics import observe_snapshot_load_fallback, observe_snapshot_write


logger = logging.getLogger("app.fields.persistence")

DEFAULT_SNAPSHOT_KEY = "crm-fields-config"


class FieldRegistryPersistence:
    """Loads and saves the full module -> fields mapping as one JSON blob.

    With ``write_behind`` enabled, writes run on a single worker thread: the
    caller never waits on storage, and writes land in submission order, so the
    stored blob is always the most recently submitted full snapshot.
    """

    def __init__(self, store: KeyValueStore, *, key: str = DEFAULT_SNAPSHOT_KEY, write_behind: bool = False) -> None:
        self._store = store
        self.key = key
        self._executor: ThreadPoolExecutor | None = None
        self._pending: Future[None] | None = None
        if write_behind:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="field-snapshot")

    @property
    def write_behind(self) -> bool:
        return self._executor is not None

    def load(self) -> dict[str, list[FieldDefinition]]:
        blob = self._store.load(self.key)
        if blob is None:
            logger.info("fields.snapshot.missing", extra={"snapshot_key": self.key})
            observe_snapshot_load_fallback("missing")
            return default_fields()

        try:
            snapshot: dict[str, list[FieldDefinition]] = field_snapshot_adapter.validate_json(blob)
        except ValueError as exc:
            logger.warning("fields.snapshot.corrupt", extra={"snapshot_key": self.key, "error": str(exc)})
            observe_snapshot_load_fallback("corrupt")
            return default_fields()

        logger.info("fields.snapshot.loaded", extra={"snapshot_key": self.key})
        return snapshot

    def serialize(self, snapshot: Mapping[str, Sequence[FieldDefinition]]) -> str:
        payload = {module: list(definitions) for module, definitions in snapshot.items()}
        return field_snapshot_adapter.dump_json(payload, by_alias=True).decode("utf-8")

    def save(self, snapshot: Mapping[str, Sequence[FieldDefinition]]) -> None:
        # Serialized on the calling thread so the worker never sees a registry mid-mutation.
        blob = self.serialize(snapshot)
        if self._executor is None:
            self._write(blob)
            return
        context = contextvars.copy_context()
        self._pending = self._executor.submit(context.run, self._write, blob)

    def flush(self) -> None:
        pending = self._pending
        if pending is not None:
            pending.result()

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._pending = None

    def _write(self, blob: str) -> None:
        try:
            self._store.save(self.key, blob)
        except Exception as exc:
            logger.exception("fields.snapshot.write_failed", extra={"snapshot_key": self.key, "error": str(exc)[:500]})
            observe_snapshot_write("failed")
            return
        observe_snapshot_write("ok")
