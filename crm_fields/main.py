from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from crm_fields.api.routes import router as api_router
from crm_fields.core.config import Settings, get_settings
from crm_fields.core.database import Base, build_engine, build_session_factory
from crm_fields.fields.binder import RecordBinder
from crm_fields.fields.persistence import FieldRegistryPersistence
from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.storage import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from crm_fields.logging import configure_logging
from crm_fields.middleware.correlation_id import CorrelationIdMiddleware
from crm_fields.middleware.request_logging import RequestLoggingMiddleware


configure_logging()
logger = logging.getLogger("app.lifecycle")


def build_snapshot_store(settings: Settings) -> KeyValueStore:
    backend = settings.field_store_backend.lower()
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend != "sql":
        raise ValueError(f"unsupported field_store_backend: {settings.field_store_backend}")
    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    return SqlKeyValueStore(build_session_factory(engine))


def create_app(snapshot_store: KeyValueStore | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        store = snapshot_store if snapshot_store is not None else build_snapshot_store(settings)
        persistence = FieldRegistryPersistence(
            store,
            key=settings.field_snapshot_key,
            write_behind=settings.field_write_behind,
        )
        registry = FieldRegistry(persistence, custom_field_cap=settings.custom_field_cap)
        app.state.field_registry = registry
        app.state.record_binder = RecordBinder(registry, enforce_select_options=settings.enforce_select_options)
        logger.info("fields.registry.ready", extra={"snapshot_key": persistence.key})
        try:
            yield
        finally:
            registry.persist()
            persistence.close()
            logger.info("fields.registry.closed", extra={"snapshot_key": persistence.key})

    app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(api_router)
    return app


app = create_app()
