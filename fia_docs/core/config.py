from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 5
    database_apply_schema: bool = False
    storage_base_url: str = "https://fia.ort.dev"
    storage_region: str = "us-east-1"
    storage_access_key: str | None = None
    storage_secret_key: str | None = None
    season_year: int | None = None
    fia_season_id: int = 2071
    f1_feed_url: str = (
        "https://www.fia.com/documents/championships/fia-formula-one-world-championship-14"
        "/season/season-{year}-{season_id}"
    )
    f2_feed_url: str = (
        "https://www.fia.com/documents/season/season-{year}-{season_id}/championships/formula-2-championship-44"
    )
    f3_feed_url: str = (
        "https://www.fia.com/documents/season/season-{year}-{season_id}/championships/fia-formula-3-championship-1012"
    )
    cycle_interval_seconds: float = 300.0
    cycle_min_delay_seconds: float = 30.0
    document_refresh_interval_hours: float = 24.0
    http_timeout_seconds: float = 30.0
    user_agent: str = "fia-docs-ingester/1.1"
    scratch_dir: str = "./tmp"
    render_command: str = "magick"
    render_density: int = 150
    render_quality: int = 85
    otel_enabled: bool = True
    otel_service_name: str = "fia-docs-ingester"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="FIA_", extra="ignore")

    def missing_required(self) -> list[str]:
        missing: list[str] = []
        if not self.database_url:
            missing.append("FIA_DATABASE_URL")
        if not self.storage_access_key:
            missing.append("FIA_STORAGE_ACCESS_KEY")
        if not self.storage_secret_key:
            missing.append("FIA_STORAGE_SECRET_KEY")
        return missing


@lru_cache
def get_settings() -> Settings:
    return Settings()
