"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── LLM ──────────────────────────────────────────────────────────
    use_llm: bool = Field(default=True, alias="FF_USE_LLM")
    # ON  → Suggestions and custom-plan parsing go to the chat completion API.
    #       Needs OPENAI_API_KEY. Any failure still falls back per request.
    # OFF → Deterministic rule-based engine only. No network calls.

    # ── Per-user lock ────────────────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → Inbound messages for one user are serialized with a Redis lock.
    #       Needs REDIS_URL.
    # OFF → In-process asyncio lock. Only safe with a single worker.

    # ── Webhook security ─────────────────────────────────────────────
    enforce_twilio_signature: bool = Field(default=False, alias="FF_ENFORCE_TWILIO_SIGNATURE")
    # ON  → Requests are rejected unless signed, even with no TWILIO_AUTH_TOKEN.
    # OFF → Without TWILIO_AUTH_TOKEN the check is skipped with a warning (dev).

    # ── Message log ──────────────────────────────────────────────────
    log_sms: bool = Field(default=True, alias="FF_LOG_SMS")
    # ON  → Every outbound SMS writes one sms_messages row.
    # OFF → Outbound SMS is not recorded. Inbound messages are always logged.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
