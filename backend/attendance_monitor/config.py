import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List

from dotenv import load_dotenv

_BACKEND_ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,127}$")


def _to_int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _to_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _split_csv(value: str | None, default: List[str]) -> List[str]:
    if not value:
        return default
    parts = [item.strip() for item in value.split(",") if item.strip()]
    return parts or default


def _table_name(value: str | None, default: str) -> str:
    text = (value or "").strip()
    if not text or not _TABLE_NAME_RE.match(text):
        return default
    return text


def _default_app_db_path() -> str:
    backend_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    return os.path.join(backend_root, "data", "app.db")


@dataclass(frozen=True)
class Settings:
    db_server: str
    db_port: int
    db_name: str
    db_user: str
    db_pass: str
    attendance_table: str

    admin_username: str
    admin_password: str
    admin_email: str

    app_db_path: str

    jwt_secret: str
    jwt_algorithm: str
    jwt_expires_minutes: int

    allow_origins: List[str]
    cookie_domain: str | None
    cookie_secure: bool

    default_page_size: int
    max_page_size: int
    report_title: str


def get_settings() -> Settings:
    max_page_size = max(1, _to_int(os.getenv("MAX_PAGE_SIZE"), 100))
    return Settings(
        db_server=(os.getenv("DB_SERVER") or "").strip(),
        db_port=_to_int(os.getenv("DB_PORT"), 1433),
        db_name=os.getenv("DB_NAME", "Attendance"),
        db_user=os.getenv("DB_USER", ""),
        db_pass=os.getenv("DB_PASS", ""),
        attendance_table=_table_name(os.getenv("ATTENDANCE_TABLE"), "attendance"),
        admin_username=os.getenv("ADMIN_USERNAME", "admin"),
        admin_password=os.getenv("ADMIN_PASSWORD", "change-me"),
        admin_email=os.getenv("ADMIN_EMAIL", "admin@local"),
        app_db_path=os.getenv("APP_DB_PATH", _default_app_db_path()),
        jwt_secret=os.getenv("JWT_SECRET", "change-this-secret"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_expires_minutes=_to_int(os.getenv("JWT_EXPIRES_MINUTES"), 480),
        allow_origins=_split_csv(
            os.getenv("ALLOW_ORIGIN"),
            [
                "http://localhost:3000",
            ],
        ),
        cookie_domain=os.getenv("COOKIE_DOMAIN") or None,
        cookie_secure=_to_bool(os.getenv("COOKIE_SECURE"), False),
        default_page_size=max(1, min(_to_int(os.getenv("DEFAULT_PAGE_SIZE"), 10), max_page_size)),
        max_page_size=max_page_size,
        report_title=(os.getenv("REPORT_TITLE") or "ATTENDANCE MONITORING").strip() or "ATTENDANCE MONITORING",
    )


settings = get_settings()
