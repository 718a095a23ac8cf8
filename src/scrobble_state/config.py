"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Web API
    api_base_url: str = "http://localhost:4110"
    preferences_path: str = "/apis/web/v1/user/preferences"
    bulk_fetch_path: str = "/apis/web/v1/spotify/bulk-fetch-sse"
    ai_critique_path: str = "/apis/web/v1/ai/critique"
    ai_profile_critique_path: str = "/apis/web/v1/ai/profile-critique"
    request_timeout_sec: float = 10.0

    # Local fallback storage (degraded mode)
    fallback_prefix: str = "pref_"
    fallback_path: str = ""  # empty keeps fallback values in memory only

    # AI circuit breaker
    ai_cooldown_seconds: int = 60
    cooldown_log_interval_sec: float = 5.0
    circuit_state_path: str = ""  # empty disables persistence across restarts

    # Reference backend
    allowed_origins: str = ""
    bulk_fetch_items: str = ""  # comma-separated track ids for the bulk job


settings = Settings()
