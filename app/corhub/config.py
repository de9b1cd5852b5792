import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    review_due_window_days: int
    api_base_url: str
    api_timeout_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///corhub.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        review_due_window_days=_getenv_int("REVIEW_DUE_WINDOW_DAYS", 30),
        api_base_url=_getenv("CORHUB_API_BASE_URL", "http://localhost:8080"),
        api_timeout_seconds=_getenv_int("CORHUB_API_TIMEOUT_SECONDS", 30),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "REVIEW_DUE_WINDOW_DAYS": s.review_due_window_days,
        "CORHUB_API_BASE_URL": s.api_base_url,
        "CORHUB_API_TIMEOUT_SECONDS": s.api_timeout_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # metadata-only uploads; keep request bodies small
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
