# chat_relay/config.py

"""
Configuration module for the chat relay.

Runtime configuration is a Pydantic `BaseSettings` class, so every field can
be set from the environment or a `.env` file and is validated at startup.

This config powers:
- The password gate (`ACCESS_PASSWORD`)
- The upstream relay base URL and its credential pools
- The router's retry ceiling, backoff and timeouts
- Request limits, CORS and inbound rate limiting

🔐 Credentials are opaque, comma-separated bearer tokens. They are only ever
read through `pool_secrets()` and are never logged.
"""

from typing import Dict, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_relay.pools import FALLBACK_POOL
from chat_relay.registry import MODEL_REGISTRY


class Settings(BaseSettings):
    # ─── Password Gate ─────────────────────────────────────────────────────────
    access_password: str = ""  # Empty disables the gate for chat requests

    # ─── Upstream ──────────────────────────────────────────────────────────────
    upstream_base_url: AnyHttpUrl = "https://yunwu.ai"
    upstream_timeout_seconds: float = Field(default=60.0, gt=0)

    # ─── Credential Pools (comma-separated keys) ───────────────────────────────
    yunwu_api_key: str = ""        # "default" pool, used when a chain is empty
    yunwu_reverse_keys: str = ""   # cheap reverse-proxied capacity
    yunwu_official_keys: str = ""  # premium official-relay capacity
    yunwu_gemini_key: str = ""
    yunwu_claude_keys: str = ""

    # ─── Router Policy ─────────────────────────────────────────────────────────
    max_attempts_per_credential: int = Field(default=3, ge=1, le=10)
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)
    backoff_budget_seconds: float = Field(default=20.0, ge=0)  # Total sleep per request

    # ─── Request Defaults & Limits ─────────────────────────────────────────────
    default_chat_model: str = "GPT-5.2"
    default_temperature: float = Field(default=0.7, ge=0, le=2)
    max_input_chars: int = 16000           # Max total character count across messages
    max_body_bytes: int = 1_048_576        # Larger bodies are rejected with 413

    # ─── CORS Configuration ────────────────────────────────────────────────────
    cors_origins: List[str] = ["*"]  # Use "*" to allow any origin

    # ─── Rate Limiting Policies ────────────────────────────────────────────────
    # Format must be "<count>/<unit>", e.g. "30/minute"
    rate_limit_chat: str = "30/minute"
    rate_limit_enabled: bool = True

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─── Validators ────────────────────────────────────────────────────────────
    @field_validator("rate_limit_chat")
    @classmethod
    def check_rate_limit_format(cls, v: str) -> str:
        """
        Validates rate limit string format: must include a "/" (e.g., "30/minute").
        This avoids malformed rate-limit strings that would break SlowAPI.
        """
        if "/" not in v:
            raise ValueError("rate limits must be of form `<num>/<unit>`, e.g. `30/minute`")
        return v

    @field_validator("default_chat_model")
    @classmethod
    def check_default_model(cls, v: str) -> str:
        if v not in MODEL_REGISTRY:
            raise ValueError(f"default_chat_model '{v}' is not a registered model")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    # ─── Helpers ───────────────────────────────────────────────────────────────
    @property
    def base_url(self) -> str:
        return str(self.upstream_base_url).rstrip("/")

    def pool_secrets(self) -> Dict[str, str]:
        """Pool name → raw comma-separated secret, as consumed by `build_pool`."""
        return {
            "reverse": self.yunwu_reverse_keys,
            "official": self.yunwu_official_keys,
            "gemini": self.yunwu_gemini_key,
            "claude": self.yunwu_claude_keys,
            FALLBACK_POOL: self.yunwu_api_key,
        }


# Instantiate a singleton config object, importable throughout the app
settings = Settings()
