from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Teamspace API"
    app_env: str = "local"
    app_debug: bool = True
    api_port: int = 8000
    remote_api_url: str | None = None
    remote_api_key: str | None = None
    remote_bearer_token: str | None = None
    probe_timeout_seconds: float = 3.0
    request_timeout_seconds: float = 10.0
    local_database_url: str = "sqlite+pysqlite:///./teamspace_local.db"
    stale_client_days: int = 14
    analytics_window_days: int = 30
    recent_activity_limit: int = 10
    notifications_limit: int = 50
    log_level: str = "INFO"
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_service_name: str = "teamspace-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_console_export: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_api_url and self.remote_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
