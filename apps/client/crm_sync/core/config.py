from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Nexa CRM Client"
    app_env: str = "local"
    api_base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    request_timeout_seconds: float = 15.0
    tenant_id: str | None = None
    default_page_size: int = 25
    page_size_options: list[int] = [10, 25, 50, 100]
    max_page_size: int = 100
    notify_mutation_success: bool = True
    metrics_enabled: bool = False
    metrics_port: int = 9464
    otel_enabled: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
