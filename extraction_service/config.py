"""Configuration management for the extraction service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings using environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Core service
    environment: str = Field("development", description="Deployment environment name")
    log_level: str = Field("INFO", description="Python logging level")
    log_file: Optional[Path] = Field(None, description="Optional rotating log file")
    data_dir: Path = Field(Path("./data"), description="Directory for the local session database")

    # Session persistence
    database_url: str = Field(
        "sqlite+aiosqlite:///./data/extraction.db",
        description="SQLAlchemy async DSN for session state",
    )

    # Retry configuration
    max_attempts: int = Field(3, ge=1, description="Maximum attempts for a transient failure")
    rate_limited_max_attempts: int = Field(2, ge=1, description="Maximum attempts when a site blocks us")
    backoff_base_seconds: float = Field(1.0, ge=0.0, description="Base delay for exponential backoff")
    backoff_max_seconds: float = Field(30.0, ge=0.0, description="Cap for the exponential part of backoff")
    backoff_jitter_seconds: float = Field(0.5, ge=0.0, description="Upper bound of random jitter")
    rate_limited_delay_seconds: float = Field(15.0, ge=0.0, description="Fixed delay after a block")

    # Politeness
    per_site_concurrency: int = Field(2, ge=1, description="Max concurrent tasks per site")
    max_room_hotels: int = Field(10, ge=0, description="Hotels (by rank) that get room-rate extraction")

    # Ingest sink
    upload_batch_size: int = Field(50, ge=1, description="Records per ingest call")
    ingest_base_url: str = Field("http://localhost:8787", description="Base URL of the ingest API")
    ingest_api_key: Optional[str] = Field(None, description="API key sent to the ingest API")
    ingest_timeout_seconds: float = Field(30.0, ge=1.0, description="HTTP timeout for ingest calls")

    # Enrichment
    commission_rates: Dict[str, float] = Field(
        default_factory=dict, description="Default commission percent per site, JSON encoded"
    )

    # Adapters
    adapter_modules: Annotated[List[str], NoDecode] = Field(
        default_factory=list, description="Modules imported at startup to register site adapters"
    )

    # Security
    admin_api_keys: Annotated[List[str], NoDecode] = Field(default_factory=list, description="Admin level API keys")
    operator_api_keys: Annotated[List[str], NoDecode] = Field(
        default_factory=list, description="Keys allowed to request extractions"
    )

    # Monitoring
    enable_metrics: bool = Field(True, description="Whether to expose Prometheus metrics")

    @field_validator("adapter_modules", "admin_api_keys", "operator_api_keys", mode="before")
    @classmethod
    def _split_csv(cls, value: Optional[str]):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value or []


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


__all__ = ["Settings", "get_settings"]
