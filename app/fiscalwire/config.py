import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    base_url: str
    railway_public_domain: str
    cron_secret: str

    newsdata_api_key: str
    newsdata_base_url: str

    smtp_server: str
    smtp_port: int
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str

    scheduler_enabled: bool
    rate_limit_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///fiscalwire.db"),
        base_url=_getenv("BASE_URL") or _getenv("NEXT_PUBLIC_BASE_URL"),
        railway_public_domain=_getenv("RAILWAY_PUBLIC_DOMAIN"),
        cron_secret=_getenv("CRON_SECRET"),
        newsdata_api_key=_getenv("NEWSDATA_API_KEY"),
        newsdata_base_url=_getenv("NEWSDATA_BASE_URL", "https://newsdata.io"),
        smtp_server=_getenv("SMTP_SERVER"),
        smtp_port=int(_getenv("SMTP_PORT", "587")),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        smtp_username=_getenv("SMTP_USERNAME"),
        smtp_password=_getenv("SMTP_PASSWORD"),
        email_from=_getenv("EMAIL_FROM", "The Fiscal Wire <noreply@fiscalwire.local>"),
        scheduler_enabled=_getenv_bool("SCHEDULER_ENABLED", False),
        rate_limit_enabled=_getenv_bool("RATE_LIMIT_ENABLED", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "BASE_URL": s.base_url,
        "RAILWAY_PUBLIC_DOMAIN": s.railway_public_domain,
        "CRON_SECRET": s.cron_secret,
        "NEWSDATA_API_KEY": s.newsdata_api_key,
        "NEWSDATA_BASE_URL": s.newsdata_base_url,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        "SCHEDULER_ENABLED": s.scheduler_enabled,
        "RATELIMIT_ENABLED": s.rate_limit_enabled,
        "RATELIMIT_STORAGE_URI": "memory://",
        "RATELIMIT_HEADERS_ENABLED": True,
        "RATELIMIT_HEADER_RETRY_AFTER_VALUE": "delta-seconds",
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "JSON_SORT_KEYS": False,
        # JSON bodies only; no uploads
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
