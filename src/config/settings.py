# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for credentials, operational limits and backend
selection. Validation of cross-field rules happens once at load time.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is missing or internally inconsistent."""

    def __init__(self, message: str, missing_keys: list[str] | None = None) -> None:
        self.missing_keys = missing_keys or []
        super().__init__(message)


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === PLANNER (LLM) ===
    llm_provider: Literal["openai", "anthropic"] = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 2048
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # === X (twitterapi.io) ===
    x_api_key: str = ""
    x_api_base_url: str = "https://api.twitterapi.io/twitter/tweet"

    # === Instagram (Meta Graph API) ===
    meta_access_token: str = ""
    ig_user_id: str = ""
    meta_graph_api_version: str = "v18.0"

    # === TikTok Research API ===
    tiktok_client_key: str = ""
    tiktok_client_secret: str = ""
    tiktok_api_base_url: str = "https://open.tiktokapis.com/v2"

    # === Operational ===
    max_posts_per_platform_default: int = 30
    batch_size: int = 15
    max_retries: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    retry_jitter_s: float = 1.0
    rate_limit_sleep_s: float = 5.0
    max_expansions: int = 1
    max_pages_per_stage: int = 20
    source_order: str = "instagram,x,tiktok"
    http_timeout_s: float = 30.0

    # === Time budget ===
    host_execution_limit_s: float = 360.0
    safety_margin_s: float = 60.0
    continuation_delay_s: float = 2.0

    # === Checkpoint store ===
    checkpoint_backend: Literal["json", "sqlite", "redis"] = "json"
    checkpoint_root: Path = Path("~/.pulsecollect/runs")
    checkpoint_redis_url: str = ""
    retention_keep: int = 50

    # === Output sink ===
    sink_root: Path = Path("~/.pulsecollect/output")

    # === Artifact store ===
    artifact_backend: Literal["local", "s3"] = "local"
    artifact_root: Path = Path("~/.pulsecollect/artifacts")
    artifact_s3_bucket: str = ""
    artifact_s3_prefix: str = "pulsecollect/"
    artifact_s3_region: str = ""

    # === Modes ===
    use_mocks: bool = False
    api_secret: str = ""

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("batch_size", "max_pages_per_stage", "retention_keep")
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("max_expansions", "max_retries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.safety_margin_s >= self.host_execution_limit_s:
            errors.append(
                "SAFETY_MARGIN_S must be smaller than HOST_EXECUTION_LIMIT_S"
            )

        if self.checkpoint_backend == "redis" and not self.checkpoint_redis_url:
            errors.append(
                "CHECKPOINT_REDIS_URL must be set when CHECKPOINT_BACKEND=redis"
            )

        if self.artifact_backend == "s3" and not self.artifact_s3_bucket:
            errors.append(
                "ARTIFACT_S3_BUCKET must be set when ARTIFACT_BACKEND=s3"
            )

        unknown = [s for s in self.source_order_list if s not in KNOWN_SOURCES]
        if unknown:
            errors.append(f"SOURCE_ORDER contains unknown sources: {', '.join(unknown)}")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def source_order_list(self) -> list[str]:
        """Parse comma-separated source order."""
        return [s.strip() for s in self.source_order.split(",") if s.strip()]

    @property
    def execution_budget_s(self) -> float:
        """Usable seconds per invocation once the finalization reserve is held back."""
        return self.host_execution_limit_s - self.safety_margin_s

    def missing_required_keys(self) -> list[str]:
        """Return env keys required for a real (non-mock) run that are unset."""
        if self.use_mocks:
            return []
        missing: list[str] = []
        if self.llm_provider == "openai" and not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if self.llm_provider == "anthropic" and not self.anthropic_api_key:
            missing.append("ANTHROPIC_API_KEY")
        return missing

    def source_configuration(self) -> dict[str, bool]:
        """Per-source credential presence (independent of mock mode)."""
        return {
            "instagram": bool(self.meta_access_token and self.ig_user_id),
            "x": bool(self.x_api_key),
            "tiktok": bool(self.tiktok_client_key and self.tiktok_client_secret),
        }


KNOWN_SOURCES: tuple[str, ...] = ("instagram", "x", "tiktok")

SOURCE_SETUP_HINTS: dict[str, str] = {
    "instagram": "set META_ACCESS_TOKEN and IG_USER_ID",
    "x": "set X_API_KEY",
    "tiktok": "set TIKTOK_CLIENT_KEY and TIKTOK_CLIENT_SECRET",
}


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
