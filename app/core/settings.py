from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PLACEHOLDER_MARKERS = ("placeholder", "your-")


def is_real_credential(value: str | None) -> bool:
    """False for empty values and the placeholders shipped in .env templates."""
    if not value or not value.strip():
        return False
    low = value.lower()
    return not any(m in low for m in _PLACEHOLDER_MARKERS)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Service
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    ping_message: str = Field(default="pong", alias="PING_MESSAGE")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    # ──────────────────────────────────────────────────────────────
    # Supabase (PostgREST + Realtime)
    # Service role key is used server-side for REST (bypasses RLS).
    # Anon key is enough for realtime subscriptions.
    # ──────────────────────────────────────────────────────────────

    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_ROLE_KEY")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_timeout_s: float = Field(default=20.0, alias="SUPABASE_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # NASA FIRMS: country CSV API
    # https://firms.modaps.eosdis.nasa.gov/api/country/csv/{KEY}/{SOURCE}/{AREA}/{DAYS}
    # ──────────────────────────────────────────────────────────────

    firms_api_key: str = Field(default="", alias="NASA_FIRMS_API_KEY")
    firms_base_url: str = Field(
        default="https://firms.modaps.eosdis.nasa.gov/api/country/csv",
        alias="FIRMS_BASE_URL",
    )
    firms_source: str = Field(default="VIIRS_SNPP_NRT", alias="FIRMS_SOURCE")
    firms_area: str = Field(default="IND", alias="FIRMS_AREA")
    firms_days: int = Field(default=1, alias="FIRMS_DAYS")
    firms_timeout_s: float = Field(default=30.0, alias="FIRMS_TIMEOUT_S")
    firms_deterministic_ids: bool = Field(default=False, alias="FIRMS_DETERMINISTIC_IDS")

    # ──────────────────────────────────────────────────────────────
    # Action plans (LLM)
    # ──────────────────────────────────────────────────────────────

    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    action_plan_timeout_s: float = Field(default=25.0, alias="ACTION_PLAN_TIMEOUT_S")
    action_plan_max_tokens: int = Field(default=1024, alias="ACTION_PLAN_MAX_TOKENS")

    # ──────────────────────────────────────────────────────────────
    # Realtime (live channel + demo fallback)
    # ──────────────────────────────────────────────────────────────

    realtime_demo_interval_s: float = Field(default=8.0, alias="REALTIME_DEMO_INTERVAL_S")
    realtime_max_retries: int = Field(default=3, alias="REALTIME_MAX_RETRIES")
    realtime_backoff_base_s: float = Field(default=1.0, alias="REALTIME_BACKOFF_BASE_S")
    realtime_join_timeout_s: float = Field(default=10.0, alias="REALTIME_JOIN_TIMEOUT_S")

    @property
    def store_configured(self) -> bool:
        return is_real_credential(self.supabase_url) and is_real_credential(self.supabase_service_role_key)

    @property
    def realtime_configured(self) -> bool:
        return is_real_credential(self.supabase_url) and is_real_credential(self.supabase_anon_key)

    @property
    def firms_configured(self) -> bool:
        return is_real_credential(self.firms_api_key)

    @property
    def llm_configured(self) -> bool:
        return is_real_credential(self.openai_api_key)


settings = Settings()
