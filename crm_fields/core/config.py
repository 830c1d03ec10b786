from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CRM Fields API"
    app_env: str = "local"
    database_url: str = "sqlite+pysqlite:///./crm_fields.db"
    field_store_backend: str = "sql"
    field_snapshot_key: str = "crm-fields-config"
    field_write_behind: bool = True
    custom_field_cap: int = 25
    enforce_select_options: bool = False
    metrics_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
