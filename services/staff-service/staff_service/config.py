from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os


def _optional_env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration values exposed to FastAPI components."""

    app_name: str = "staff-service"
    version: str = "0.1.0"
    supabase_url: str | None = _optional_env("SUPABASE_URL")
    supabase_service_role_key: str | None = _optional_env("SUPABASE_SERVICE_ROLE_KEY")
    supabase_jwt_secret: str | None = _optional_env("SUPABASE_JWT_SECRET")
    jwt_audience: str = os.getenv("JWT_AUDIENCE", "authenticated")
    profiles_table: str = os.getenv("PROFILES_TABLE", "profiles")
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
    audit_database_url: str | None = _optional_env("AUDIT_DATABASE_URL")
    http_host: str = os.getenv("HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("PORT", "3000"))
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    rate_limit_requests: int = int(os.getenv("RATE_LIMIT_REQUESTS", "20"))
    rate_limit_window_seconds: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    rate_limit_backend: str = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
    redis_url: str = os.getenv("REDIS_URL", "")

    @property
    def missing_required(self) -> list[str]:
        """Names of required environment variables that were not supplied."""
        missing = []
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        return missing

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings instance for the running process."""
    return Settings()
