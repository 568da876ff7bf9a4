"""
Centralized settings for the Hostel Grievance Portal backend.

Provides a lightweight wrapper around environment variables (with `.env`
support for local development) so the rest of the codebase can import a single
`get_settings()` helper when configuration is needed. Transport credentials
(mail, WhatsApp, classifier, storage) all live here so the workflow modules
receive them through their constructors instead of reading `os.environ`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os

from dotenv import dotenv_values


@dataclass(frozen=True)
class Settings:
    """Immutable view of application configuration."""

    # General
    environment: str
    database_url: str
    cors_origins: tuple[str, ...]
    allowed_hosts: tuple[str, ...]

    # Sessions / identity
    jwt_secret: Optional[str]
    session_days: int
    session_cookie_name: str
    session_cookie_secure: bool
    institute_email_domain: str
    otp_expiry_minutes: int
    otp_max_attempts: int
    admin_token_required: bool

    # Email (SMTP)
    smtp_host: str
    smtp_port: int
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    smtp_use_tls: bool
    email_from: str
    email_timeout_seconds: float

    # WhatsApp (Twilio)
    twilio_account_sid: Optional[str]
    twilio_auth_token: Optional[str]
    twilio_whatsapp_from: Optional[str]
    twilio_api_base: str
    twilio_webhook_url: Optional[str]
    messaging_timeout_seconds: float
    default_country_code: str

    # Classifier
    openai_api_key: Optional[str]
    classifier_model: str
    classifier_timeout_seconds: float

    # S3 / object storage
    storage_provider: str
    s3_bucket: str
    s3_region: str
    s3_endpoint: Optional[str]
    s3_use_ssl: bool
    s3_access_key_id: Optional[str]
    s3_secret_access_key: Optional[str]
    s3_public_base_url: Optional[str]
    cloudfront_domain: Optional[str]

    # Observability
    sentry_dsn: Optional[str]
    metrics_namespace: str


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env_lookup(key: str, env: dict[str, str], default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key) or env.get(key) or default


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""

    env_path = Path(__file__).resolve().parents[2] / ".env"
    env_file = dotenv_values(str(env_path)) if env_path.exists() else {}

    return Settings(
        environment=_env_lookup("APP_ENV", env_file, "development"),
        database_url=_env_lookup("DATABASE_URL", env_file, "sqlite+aiosqlite:///./grievance.db"),
        cors_origins=_as_list(_env_lookup("CORS_ORIGINS", env_file, "http://localhost:5173")),
        allowed_hosts=_as_list(_env_lookup("ALLOWED_HOSTS", env_file, "*")),
        jwt_secret=_env_lookup("JWT_SECRET", env_file),
        session_days=int(_env_lookup("SESSION_DAYS", env_file, "7")),
        session_cookie_name=_env_lookup("SESSION_COOKIE_NAME", env_file, "token"),
        session_cookie_secure=_as_bool(_env_lookup("SESSION_COOKIE_SECURE", env_file, "false")),
        institute_email_domain=_env_lookup("INSTITUTE_EMAIL_DOMAIN", env_file, "students.vnit.ac.in").lstrip("@").lower(),
        otp_expiry_minutes=int(_env_lookup("OTP_EXPIRY_MINUTES", env_file, "10")),
        otp_max_attempts=int(_env_lookup("OTP_MAX_ATTEMPTS", env_file, "5")),
        admin_token_required=_as_bool(_env_lookup("ADMIN_TOKEN_REQUIRED", env_file, "false")),
        smtp_host=_env_lookup("SMTP_HOST", env_file, "localhost"),
        smtp_port=int(_env_lookup("SMTP_PORT", env_file, "587")),
        smtp_user=_env_lookup("SMTP_USER", env_file),
        smtp_password=_env_lookup("SMTP_PASSWORD", env_file),
        smtp_use_tls=_as_bool(_env_lookup("SMTP_USE_TLS", env_file, "true"), True),
        email_from=_env_lookup("EMAIL_FROM", env_file, "Hostel Grievance System <noreply@grievance.local>"),
        email_timeout_seconds=float(_env_lookup("EMAIL_TIMEOUT_SECONDS", env_file, "10")),
        twilio_account_sid=_env_lookup("TWILIO_ACCOUNT_SID", env_file),
        twilio_auth_token=_env_lookup("TWILIO_AUTH_TOKEN", env_file),
        twilio_whatsapp_from=_env_lookup("TWILIO_WHATSAPP_FROM", env_file),
        twilio_api_base=_env_lookup("TWILIO_API_BASE", env_file, "https://api.twilio.com/2010-04-01"),
        twilio_webhook_url=_env_lookup("TWILIO_WEBHOOK_URL", env_file),
        messaging_timeout_seconds=float(_env_lookup("MESSAGING_TIMEOUT_SECONDS", env_file, "10")),
        default_country_code=_env_lookup("DEFAULT_COUNTRY_CODE", env_file, "91"),
        openai_api_key=_env_lookup("OPENAI_API_KEY", env_file),
        classifier_model=_env_lookup("CLASSIFIER_MODEL", env_file, "gpt-4o-mini"),
        classifier_timeout_seconds=float(_env_lookup("CLASSIFIER_TIMEOUT_SECONDS", env_file, "8")),
        storage_provider=_env_lookup("STORAGE_PROVIDER", env_file, "local").lower(),
        s3_bucket=_env_lookup("S3_BUCKET", env_file, "grievance-evidence"),
        s3_region=_env_lookup("S3_REGION", env_file, "us-east-1"),
        s3_endpoint=_env_lookup("S3_ENDPOINT", env_file) or _env_lookup("S3_ENDPOINT_URL", env_file),
        s3_use_ssl=_as_bool(_env_lookup("S3_USE_SSL", env_file, "true"), True),
        s3_access_key_id=_env_lookup("S3_ACCESS_KEY_ID", env_file) or _env_lookup("S3_ACCESS_KEY", env_file),
        s3_secret_access_key=_env_lookup("S3_SECRET_ACCESS_KEY", env_file) or _env_lookup("S3_SECRET_KEY", env_file),
        s3_public_base_url=_env_lookup("S3_PUBLIC_BASE_URL", env_file),
        cloudfront_domain=_env_lookup("CLOUDFRONT_DOMAIN", env_file),
        sentry_dsn=_env_lookup("SENTRY_DSN", env_file),
        metrics_namespace=_env_lookup("METRICS_NAMESPACE", env_file, "grievance"),
    )


__all__ = ["Settings", "get_settings"]
