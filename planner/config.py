from __future__ import annotations
import os
from typing import Optional

from pydantic import BaseModel


def normalize_database_url(url: str) -> str:
    return "postgresql://" + url[len("postgres://"):] if url.startswith("postgres://") else url


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = "sqlite:///./planner.db"
    session_secret: str = "dev-secret"
    session_ttl_seconds: int = 60 * 60 * 24 * 30  # 30d
    auth_cookie: str = "planner_session"
    login_cookie: str = "planner_login"
    cookie_secure: bool = False
    origin: str = "http://localhost:8000"
    magic_link_ttl_seconds: int = 60 * 30
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        db_url = os.getenv("DATABASE_URL", "").strip()
        if db_url:
            db_url = normalize_database_url(db_url)
            if db_url.startswith("postgresql://") and "+psycopg2" not in db_url:
                db_url = db_url.replace("postgresql://", "postgresql+psycopg2://", 1)
        else:
            db_url = cls.model_fields["database_url"].default
        return cls(
            database_url=db_url,
            session_secret=os.getenv("SESSION_SECRET", "dev-secret"),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60 * 24 * 30))),
            auth_cookie=os.getenv("AUTH_COOKIE", "planner_session"),
            cookie_secure=_env_bool("COOKIE_SECURE", False),
            origin=os.getenv("ORIGIN", "http://localhost:8000"),
            magic_link_ttl_seconds=int(os.getenv("MAGIC_LINK_TTL_SECONDS", "1800")),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_from=os.getenv("SMTP_FROM") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
