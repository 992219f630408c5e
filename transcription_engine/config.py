"""Engine configuration loaded from environment variables.

Explicit keyword arguments override the environment, matching the way the
storage and provider clients read their own settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{value}'") from exc


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{value}'") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


@dataclass
class EngineSettings:
    """All tunables for the transcription engine.

    Environment variables:
        APP_URL, DEFAULT_TRANSCRIBE_PROVIDER, OPENAI_API_KEY,
        ASSEMBLYAI_API_KEY, SPEECHMATICS_API_KEY, SALAD_API_KEY,
        SALAD_API_URL, TRANSCRIPTION_MAX_RETRIES, RETRY_BASE_DELAY_SECONDS,
        RETRY_MAX_DELAY_SECONDS, RETRY_BACKOFF_MULTIPLIER,
        RETRY_INTERVAL_SECONDS, RETRY_BATCH_SIZE, STALE_ATTEMPT_SECONDS,
        INTERNAL_API_URL, INTERNAL_API_SECRET, REALTIME_GATEWAY_URL,
        OBJECT_STORAGE_ENDPOINT, OBJECT_STORAGE_BUCKET,
        OBJECT_STORAGE_ACCESS_KEY_ID, OBJECT_STORAGE_SECRET_ACCESS_KEY,
        SIGNED_URL_TTL_SECONDS, SENTIMENT_PROVIDER, RETRY_SCHEDULER_ENABLED,
        LOG_LEVEL, PORT
    """

    app_url: str = ""
    default_provider: str = "openai"
    provider_keys: dict[str, str] = field(default_factory=dict)
    salad_api_url: str = ""
    max_retries: int = 3
    retry_base_delay_seconds: float = 60.0
    retry_max_delay_seconds: float = 3600.0
    backoff_multiplier: float = 2.0
    retry_interval_seconds: float = 300.0
    retry_batch_size: int = 50
    stale_attempt_seconds: float = 5 * 60 * 60
    internal_api_url: str = ""
    internal_api_secret: str = ""
    realtime_gateway_url: str = ""
    object_storage_endpoint: str = ""
    object_storage_bucket: str = ""
    object_storage_access_key_id: str = ""
    object_storage_secret_access_key: str = ""
    signed_url_ttl_seconds: int = 3600
    sentiment_provider: str | None = None
    scheduler_enabled: bool = True
    log_level: str = "INFO"
    port: int = 8080

    @property
    def webhook_base_url(self) -> str:
        """Base URL providers call back on, without the correlation query."""
        return f"{self.app_url.rstrip('/')}/api/webhook"

    @property
    def object_storage_configured(self) -> bool:
        return bool(self.object_storage_endpoint and self.object_storage_bucket)

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Build settings from the process environment."""
        provider_keys = {
            "openai": os.environ.get("OPENAI_API_KEY", ""),
            "assemblyai": os.environ.get("ASSEMBLYAI_API_KEY", ""),
            "speechmatics": os.environ.get("SPEECHMATICS_API_KEY", ""),
            "salad": os.environ.get("SALAD_API_KEY", ""),
        }
        return cls(
            app_url=os.environ.get("APP_URL", ""),
            default_provider=os.environ.get("DEFAULT_TRANSCRIBE_PROVIDER", "openai"),
            provider_keys={name: key for name, key in provider_keys.items() if key},
            salad_api_url=os.environ.get("SALAD_API_URL", ""),
            max_retries=_env_int("TRANSCRIPTION_MAX_RETRIES", 3),
            retry_base_delay_seconds=_env_float("RETRY_BASE_DELAY_SECONDS", 60.0),
            retry_max_delay_seconds=_env_float("RETRY_MAX_DELAY_SECONDS", 3600.0),
            backoff_multiplier=_env_float("RETRY_BACKOFF_MULTIPLIER", 2.0),
            retry_interval_seconds=_env_float("RETRY_INTERVAL_SECONDS", 300.0),
            retry_batch_size=_env_int("RETRY_BATCH_SIZE", 50),
            stale_attempt_seconds=_env_float("STALE_ATTEMPT_SECONDS", 5 * 60 * 60),
            internal_api_url=os.environ.get("INTERNAL_API_URL", ""),
            internal_api_secret=os.environ.get("INTERNAL_API_SECRET", ""),
            realtime_gateway_url=os.environ.get("REALTIME_GATEWAY_URL", ""),
            object_storage_endpoint=os.environ.get("OBJECT_STORAGE_ENDPOINT", ""),
            object_storage_bucket=os.environ.get("OBJECT_STORAGE_BUCKET", ""),
            object_storage_access_key_id=os.environ.get(
                "OBJECT_STORAGE_ACCESS_KEY_ID", ""
            ),
            object_storage_secret_access_key=os.environ.get(
                "OBJECT_STORAGE_SECRET_ACCESS_KEY", ""
            ),
            signed_url_ttl_seconds=_env_int("SIGNED_URL_TTL_SECONDS", 3600),
            sentiment_provider=os.environ.get("SENTIMENT_PROVIDER") or None,
            scheduler_enabled=_env_bool("RETRY_SCHEDULER_ENABLED", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            port=_env_int("PORT", 8080),
        )
