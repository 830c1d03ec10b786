from crm_fields.fields.api import router
from crm_fields.fields.binder import RecordBinder
from crm_fields.fields.customizer import (
    CustomFieldLimitError,
    FieldCustomizer,
    FieldCustomizerError,
    FieldNameConflictError,
    FieldNotDeletableError,
    FieldNotFoundError,
    PendingDeletion,
    UnknownModuleError,
)
from crm_fields.fields.models import FieldRegistrySnapshot
from crm_fields.fields.persistence import FieldRegistryPersistence
from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.schemas import (
    BindResult,
    CustomFieldUsage,
    DeleteOutcome,
    FieldDefinition,
    FieldDraft,
    FieldUpdate,
    ValidationResult,
)
from crm_fields.fields.storage import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore

__all__ = [
    "router",
    "FieldRegistrySnapshot",
    "BindResult",
    "CustomFieldUsage",
    "DeleteOutcome",
    "FieldDefinition",
    "FieldDraft",
    "FieldUpdate",
    "ValidationResult",
    "FieldRegistry",
    "FieldRegistryPersistence",
    "FieldCustomizer",
    "FieldCustomizerError",
    "CustomFieldLimitError",
    "FieldNameConflictError",
    "FieldNotDeletableError",
    "FieldNotFoundError",
    "PendingDeletion",
    "UnknownModuleError",
    "RecordBinder",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqlKeyValueStore",
]
