from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import pymssql

from .config import settings

logger = logging.getLogger(__name__)
_DB_TARGET_LOGGED = False

DBOperationalError = pymssql.OperationalError


def get_db_settings() -> dict[str, Any]:
    return {
        "server": settings.db_server,
        "port": settings.db_port,
        "name": (settings.db_name or "").strip() or "Attendance",
        "user": (settings.db_user or "").strip(),
        "pass": settings.db_pass or "",
        "table": settings.attendance_table,
    }


def validate_db_server_for_startup() -> None:
    db = get_db_settings()
    if not str(db["server"]).strip():
        raise RuntimeError("DB_SERVER is empty; set DB_SERVER in backend/.env")


def log_db_connection_target_once() -> None:
    global _DB_TARGET_LOGGED
    if _DB_TARGET_LOGGED:
        return
    db = get_db_settings()
    logger.info(
        "DB: connecting to %s:%s / %s as %s (table %s)",
        db["server"],
        db["port"],
        db["name"],
        db["user"] or "<empty>",
        db["table"],
    )
    _DB_TARGET_LOGGED = True


def get_db_connection_error_payload() -> dict[str, Any]:
    db = get_db_settings()
    return {
        "error": "DB connection failed",
        "hint": "Check network access and backend/.env DB_SERVER/DB_PORT",
        "server": db["server"],
        "port": db["port"],
    }


@contextmanager
def get_cursor(commit: bool = False) -> Iterator[Any]:
    db = get_db_settings()
    connection = pymssql.connect(
        server=db["server"],
        port=int(db["port"]),
        user=db["user"],
        password=db["pass"],
        database=db["name"],
        login_timeout=8,
        timeout=15,
        charset="UTF-8",
        as_dict=True,
    )
    try:
        cursor = connection.cursor()
        try:
            yield cursor
            if commit:
                connection.commit()
        except Exception:
            if commit:
                connection.rollback()
            raise
        finally:
            cursor.close()
    finally:
        connection.close()
