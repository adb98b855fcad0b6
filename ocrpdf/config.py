"""Runtime configuration for the OCR extraction orchestrator.

One immutable `AppConfig` is built at startup (from the environment and an
optional `.env` file) and passed explicitly into the strategy selector, the
invoker and the batch monitor. Nothing below the CLI reads the environment.

Variables (env names in parentheses):
 - AI_API_KEY_FREE   credential for the FAST (realtime, inline) tier
                     (legacy AI_API_KEY / GEMINI_API_KEY accepted)
 - AI_API_KEY_PAID   credential for the HEAVY (batch, file upload) tier
 - AI_MODEL          Gemini model name (legacy GEMINI_MODEL accepted)
 - API_SIZE_THRESHOLD  max encoded payload bytes routed to the FAST tier
 - MAX_PARALLEL_JOBS concurrent documents in directory mode
 - PDF_TEMP_BASE_DIR per-job scratch directories are created here
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ocrpdf.errors import ConfigurationError

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_UPLOAD_URL = "https://generativelanguage.googleapis.com/upload/v1beta"


class AppConfig(BaseSettings):
    fast_api_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("AI_API_KEY_FREE", "AI_API_KEY", "GEMINI_API_KEY"),
    )
    heavy_api_key: Optional[str] = Field(None, validation_alias="AI_API_KEY_PAID")
    model: str = Field(
        "gemini-2.5-pro", validation_alias=AliasChoices("AI_MODEL", "GEMINI_MODEL")
    )
    size_threshold_bytes: Optional[int] = Field(
        None, gt=0, validation_alias="API_SIZE_THRESHOLD"
    )
    temperature: float = Field(0.1, ge=0.0, le=2.0, validation_alias="TEMPERATURE")
    api_base_url: str = Field(GEMINI_BASE_URL, validation_alias="GEMINI_BASE_URL")
    upload_base_url: str = Field(GEMINI_UPLOAD_URL, validation_alias="GEMINI_UPLOAD_URL")

    # Per-request timeouts
    realtime_timeout_seconds: float = Field(1800.0, gt=0, validation_alias="REALTIME_API_TIMEOUT")
    batch_api_timeout_seconds: float = Field(300.0, gt=0, validation_alias="BATCH_API_TIMEOUT")
    connect_timeout_seconds: float = Field(30.0, gt=0, validation_alias="DEFAULT_CONNECT_TIMEOUT")

    # Retry budgets
    request_max_attempts: int = Field(3, ge=1, le=10, validation_alias="REQUEST_MAX_ATTEMPTS")
    upload_max_attempts: int = Field(3, ge=1, le=10, validation_alias="UPLOAD_MAX_ATTEMPTS")
    batch_poll_attempts: int = Field(2, ge=1, le=10, validation_alias="BATCH_POLL_ATTEMPTS")
    batch_result_attempts: int = Field(3, ge=1, le=10, validation_alias="BATCH_RESULT_ATTEMPTS")
    backoff_base_seconds: float = Field(1.0, gt=0, le=30, validation_alias="BACKOFF_BASE_SECONDS")
    backoff_cap_seconds: float = Field(60.0, gt=0, validation_alias="BACKOFF_CAP_SECONDS")
    backoff_jitter_seconds: float = Field(2.0, ge=0, validation_alias="BACKOFF_JITTER_SECONDS")

    # Batch monitoring
    batch_poll_interval_seconds: float = Field(600.0, gt=0, validation_alias="BATCH_POLL_INTERVAL")
    batch_max_wait_seconds: float = Field(28800.0, gt=0, validation_alias="BATCH_MAX_WAIT")
    max_consecutive_poll_failures: int = Field(
        3, ge=1, validation_alias="MAX_CONSECUTIVE_POLL_FAILURES"
    )

    max_parallel_jobs: int = Field(5, ge=1, le=64, validation_alias="MAX_PARALLEL_JOBS")
    temp_base_dir: Optional[Path] = Field(None, validation_alias="PDF_TEMP_BASE_DIR")
    output_dir: Optional[Path] = Field(None, validation_alias="OCR_OUTPUT_DIR")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )

    def validate_required(self) -> None:
        missing: list[str] = []
        if not (self.fast_api_key or self.heavy_api_key):
            missing.append("AI_API_KEY_FREE or AI_API_KEY_PAID")
        if self.size_threshold_bytes is None:
            missing.append("API_SIZE_THRESHOLD")
        if missing:
            raise ConfigurationError(
                "Missing required configuration values: " + ", ".join(missing),
                component="config",
            )
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            raise ConfigurationError(
                "BACKOFF_CAP_SECONDS must be >= BACKOFF_BASE_SECONDS", component="config"
            )


@lru_cache
def get_config() -> AppConfig:
    try:
        return AppConfig()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}", component="config") from exc


__all__ = ["AppConfig", "get_config", "GEMINI_BASE_URL", "GEMINI_UPLOAD_URL"]
