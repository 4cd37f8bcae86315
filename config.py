"""
Runtime configuration for the MyPortfolify API.

Values come from the environment (optionally a local .env file) and are read
exactly once, when the application is created.
"""
import os
import warnings
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr

DEV_JWT_SECRET = "dev-insecure-jwt-secret"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        warnings.warn(
            f"{name}={value!r} is not an integer. Using default {default}.",
            RuntimeWarning,
            stacklevel=2,
        )
        return default


def _env_list(name: str, default: Optional[List[str]] = None) -> List[str]:
    value = os.getenv(name)
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "myportfolify"

    jwt_secret: SecretStr = SecretStr(DEV_JWT_SECRET)
    session_strategy: Literal["jwt", "session"] = "jwt"
    bearer_token_days: int = 7
    session_hours: int = 24
    session_cookie_name: str = "portfolify_session"
    session_cookie_secure: bool = False
    reset_token_minutes: int = 60
    bcrypt_rounds: int = Field(10, ge=4, le=31)

    google_client_id: Optional[str] = None
    google_client_secret: Optional[SecretStr] = None

    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:5173"
    cors_origins: List[str] = Field(default_factory=list)

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: SecretStr = SecretStr("")
    smtp_from: str = '"MyPortfolify" <no-reply@myportfolify.com>'
    smtp_use_tls: bool = True

    admin_emails: List[str] = Field(default_factory=list)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def google_callback_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/auth/google/callback"

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    def is_admin_email(self, email: Optional[str]) -> bool:
        allowed = {e.strip().lower() for e in self.admin_emails if e.strip()}
        return (email or "").strip().lower() in allowed

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        A missing JWT_SECRET is fatal in production; elsewhere an insecure
        development key is used and a warning is emitted.
        """
        load_dotenv()
        environment = os.getenv("ENVIRONMENT", "development").strip() or "development"
        production = environment.lower() == "production"

        secret = os.getenv("JWT_SECRET")
        if not secret:
            if production:
                raise RuntimeError(
                    "JWT_SECRET environment variable is required in production."
                )
            secret = DEV_JWT_SECRET
            warnings.warn(
                "JWT_SECRET is not set. Using insecure development fallback key.",
                RuntimeWarning,
                stacklevel=2,
            )

        frontend_url = os.getenv("FRONTEND_URL", "http://localhost:5173")
        return cls(
            environment=environment,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "myportfolify"),
            jwt_secret=secret,
            session_strategy=os.getenv("SESSION_STRATEGY", "jwt").strip().lower(),
            bearer_token_days=_env_int("BEARER_TOKEN_DAYS", 7),
            session_hours=_env_int("SESSION_HOURS", 24),
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "portfolify_session"),
            session_cookie_secure=_env_bool("SESSION_COOKIE_SECURE", default=production),
            reset_token_minutes=_env_int("RESET_TOKEN_MINUTES", 60),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 10),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
            backend_url=os.getenv("BACKEND_URL", "http://localhost:8000"),
            frontend_url=frontend_url,
            cors_origins=_env_list("CORS_ORIGINS", default=[frontend_url]),
            smtp_host=os.getenv("SMTP_HOST", "").strip(),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER", "").strip(),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            smtp_from=os.getenv("SMTP_FROM", "").strip()
            or '"MyPortfolify" <no-reply@myportfolify.com>',
            smtp_use_tls=_env_bool("SMTP_USE_TLS", default=True),
            admin_emails=_env_list("ADMIN_EMAILS"),
        )
