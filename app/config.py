# app/config.py
import os
from typing import List
from pydantic import BaseModel


class Settings(BaseModel):
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.0-flash"
    gemini_timeout_seconds: float = 120.0

    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_jitter_ms: int = 0

    redis_url: str = "redis://localhost:6379/0"

    # identity provider (GET {auth_url}/auth/v1/user)
    auth_url: str = ""
    auth_api_key: str = ""

    cors_allow_origin: str = ""
    debug: bool = False

    @property
    def cors_origins(self) -> List[str]:
        # comma separated, e.g. "http://localhost:5173,https://app.example.com"
        return [o.strip() for o in self.cors_allow_origin.split(",") if o.strip()]


def load_settings() -> Settings:
    env = os.environ
    return Settings(
        gemini_api_key=env.get("GEMINI_API_KEY", ""),
        gemini_base_url=env.get("GEMINI_BASE_URL") or Settings.model_fields["gemini_base_url"].default,
        gemini_model=env.get("GEMINI_MODEL") or "gemini-2.0-flash",
        gemini_timeout_seconds=float(env.get("GEMINI_TIMEOUT_SECONDS", "120")),
        retry_max_attempts=int(env.get("RETRY_MAX_ATTEMPTS", "3")),
        retry_base_delay_ms=int(env.get("RETRY_BASE_DELAY_MS", "1000")),
        retry_jitter_ms=int(env.get("RETRY_JITTER_MS", "0")),
        redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
        auth_url=env.get("AUTH_URL", ""),
        auth_api_key=env.get("AUTH_API_KEY", ""),
        cors_allow_origin=env.get("CORS_ALLOW_ORIGIN", ""),
        debug=env.get("TABLEXTRACT_DEBUG", "0").lower() in ("1", "true", "yes"),
    )
