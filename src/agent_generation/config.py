from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .retry import RetryPolicy


def _optional_int(value: str | None) -> int | None:
    if not value:
        return None
    return int(value)


def _optional_float(value: str | None) -> float | None:
    if not value:
        return None
    return float(value)


class GenerationConfig(BaseModel):
    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Text generation
    system_prompt: str | None = Field(default_factory=lambda: os.getenv("SYSTEM_PROMPT"))
    verifiable_inference_enabled: bool = Field(
        default_factory=lambda: os.getenv("VERIFIABLE_INFERENCE_ENABLED", "false").lower() == "true"
    )
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))
    )

    # Retrying generators (unset bounds mean retry until a valid parse)
    retry_initial_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("RETRY_INITIAL_DELAY_SECONDS", "1.0"))
    )
    retry_max_attempts: int | None = Field(
        default_factory=lambda: _optional_int(os.getenv("RETRY_MAX_ATTEMPTS"))
    )
    retry_max_total_delay_seconds: float | None = Field(
        default_factory=lambda: _optional_float(os.getenv("RETRY_MAX_TOTAL_DELAY_SECONDS"))
    )

    # Encrypted secrets backing the settings accessor
    secrets_path: str | None = Field(default_factory=lambda: os.getenv("SECRETS_PATH"))
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("SECRETS_FERNET_KEY"))

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay_seconds=self.retry_initial_delay_seconds,
            max_attempts=self.retry_max_attempts,
            max_total_delay_seconds=self.retry_max_total_delay_seconds,
        )

    def require_fernet_key(self) -> str:
        if not self.fernet_key:
            raise ValueError("SECRETS_FERNET_KEY is required for encrypted secrets storage.")
        return self.fernet_key
