"""Application settings using Pydantic BaseSettings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_SANDBOX_MODULES = [
    "math",
    "statistics",
    "collections",
    "itertools",
    "functools",
    "operator",
    "datetime",
    "json",
    "re",
    "decimal",
    "fractions",
    "string",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "FinSight Analytics API"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_VALID_LOG_LEVELS}, got '{v}'")
        return upper

    @model_validator(mode="after")
    def validate_limits_positive(self) -> "Settings":
        for field_name in (
            "llm_timeout",
            "sandbox_timeout",
            "sandbox_max_timeout",
            "sandbox_memory_limit_mb",
            "sandbox_max_memory_limit_mb",
            "sandbox_cpu_time_limit",
            "sandbox_max_output_bytes",
            "signed_url_ttl_minutes",
        ):
            value = getattr(self, field_name)
            if value <= 0:
                raise ValueError(f"{field_name} must be positive, got {value}")
        if self.sandbox_timeout > self.sandbox_max_timeout:
            raise ValueError("sandbox_timeout cannot exceed sandbox_max_timeout")
        if self.sandbox_memory_limit_mb > self.sandbox_max_memory_limit_mb:
            raise ValueError("sandbox_memory_limit_mb cannot exceed sandbox_max_memory_limit_mb")
        return self

    @model_validator(mode="after")
    def validate_storage_config(self) -> "Settings":
        if self.blob_backend == "gcs" and not self.gcs_bucket_name:
            logging.getLogger(__name__).warning(
                "gcs_bucket_name is empty; live dataset samples cannot be downloaded"
            )
        return self

    @model_validator(mode="after")
    def warn_wildcard_origins(self) -> "Settings":
        if self.allowed_origins == ["*"]:
            logging.getLogger(__name__).warning(
                "allowed_origins is set to ['*'], consider restricting in production"
            )
        return self

    # CORS
    allowed_origins: list[str] = ["*"]

    # Storage backends
    storage_backend: Literal["sql", "memory"] = "sql"
    database_url: str = "sqlite+aiosqlite:///./finsight.db"
    database_echo: bool = False
    blob_backend: Literal["gcs", "memory"] = "gcs"
    gcp_project_id: str | None = None
    gcp_credentials_file: str | None = None
    gcs_bucket_name: str = ""
    signed_url_ttl_minutes: int = 15

    # Collections
    prompts_collection: str = "prompts"
    datasets_collection: str = "datasets"
    teams_collection: str = "teams"
    users_collection: str = "users"

    # Identity (Firebase Auth ID tokens)
    firebase_project_id: str = ""
    auth_check_revoked: bool = True

    # Anthropic
    anthropic_api_key: str | None = None
    anthropic_base_url: str | None = None
    llm_model: str = "claude-sonnet-4-5"
    code_generation_max_tokens: int = 4096
    code_generation_temperature: float = 0.2
    insights_max_tokens: int = 2048
    insights_temperature: float = 0.7
    llm_timeout: float = 60.0
    llm_max_retries: int = 2
    llm_retry_delay: float = 2.0
    retry_backoff_factor: float = 2.0

    # Enrichment
    sample_rows_limit: int = 5
    column_examples_limit: int = 3
    sample_cache_max_size: int = 100
    sample_cache_ttl: int = 600

    # Sandbox
    sandbox_timeout: float = 30.0
    sandbox_max_timeout: float = 60.0
    sandbox_memory_limit_mb: int = 512
    sandbox_max_memory_limit_mb: int = 1024
    sandbox_cpu_time_limit: int = 30
    sandbox_max_output_bytes: int = 5 * 1024 * 1024
    sandbox_max_visualizations: int = 20
    sandbox_max_insights: int = 20
    sandbox_allowed_modules: list[str] = DEFAULT_SANDBOX_MODULES
    sandbox_python_executable: str | None = None
    # Unprivileged uid/gid for the child; requires the service to start as root
    sandbox_uid: int | None = None
    sandbox_gid: int | None = None
    # Run the child in a fresh network namespace via util-linux unshare
    sandbox_isolate_network: bool = False

    # Access
    require_subscription: bool = True

    # Listing
    default_page_size: int = 10
    max_page_size: int = 100


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
