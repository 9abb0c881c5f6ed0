import os
from dataclasses import dataclass
from datetime import timedelta

S3_REQUIRED_KEYS = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")


@dataclass(frozen=True)
class S3Settings:
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    storage_root: str
    s3: S3Settings

    pdf_footer_text: str

    session_hours: int
    login_max_attempts: int
    login_window_seconds: int
    max_upload_mb: int

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("prod", "production")


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from e


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///cvms.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local").lower(),
        storage_root=_getenv("STORAGE_ROOT", "storage"),
        s3=S3Settings(
            endpoint=_getenv("S3_ENDPOINT"),
            region=_getenv("S3_REGION", "nyc3"),
            bucket=_getenv("S3_BUCKET"),
            access_key_id=_getenv("S3_ACCESS_KEY_ID"),
            secret_access_key=_getenv("S3_SECRET_ACCESS_KEY"),
        ),
        pdf_footer_text=_getenv("PDF_FOOTER_TEXT", "Automatically generated document"),
        session_hours=_getint("SESSION_HOURS", 8),
        login_max_attempts=_getint("LOGIN_MAX_ATTEMPTS", 5),
        login_window_seconds=_getint("LOGIN_WINDOW_SECONDS", 300),
        max_upload_mb=_getint("MAX_UPLOAD_MB", 25),
    )


def load_config() -> dict:
    """Flatten Settings into the Flask config mapping."""
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3.endpoint,
        "S3_REGION": s.s3.region,
        "S3_BUCKET": s.s3.bucket,
        "S3_ACCESS_KEY_ID": s.s3.access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3.secret_access_key,
        "PDF_FOOTER_TEXT": s.pdf_footer_text,
        "LOGIN_MAX_ATTEMPTS": s.login_max_attempts,
        "LOGIN_WINDOW_SECONDS": s.login_window_seconds,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
        "PERMANENT_SESSION_LIFETIME": timedelta(hours=s.session_hours),
        "SESSION_REFRESH_EACH_REQUEST": True,
        "MAX_CONTENT_LENGTH": s.max_upload_mb * 1024 * 1024,
    }


def missing_s3_settings(config: dict) -> list[str]:
    if (config.get("STORAGE_BACKEND") or "local").strip().lower() != "s3":
        return []
    return [key for key in S3_REQUIRED_KEYS if not config.get(key)]
