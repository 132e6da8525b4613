from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator

from .config import settings
from .security import hash_password, utc_now_iso

logger = logging.getLogger(__name__)

USER_ROLES = ("admin", "preparer", "checker")
STAFF_ROLES = ("preparer", "checker")

_USER_COLUMNS = "id, email, username, role, is_active, created_at, updated_at, last_login_at"


def _dict_from_row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


@contextmanager
def get_app_db() -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(settings.app_db_path, timeout=30, check_same_thread=False)
    connection.row_factory = sqlite3.Row
    try:
        connection.execute("PRAGMA foreign_keys = ON")
        yield connection
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def init_app_db() -> None:
    directory = os.path.dirname(settings.app_db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with get_app_db() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                username TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL CHECK(role IN ('admin', 'preparer', 'checker')),
                password_hash TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_login_at TEXT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
            """
        )

    ensure_default_admin_user()


def ensure_default_admin_user() -> None:
    with get_app_db() as conn:
        row = conn.execute(
            "SELECT id FROM users WHERE role = 'admin' LIMIT 1"
        ).fetchone()

        if row:
            return

        now = utc_now_iso()
        conn.execute(
            """
            INSERT INTO users (email, username, role, password_hash, is_active, created_at, updated_at)
            VALUES (?, ?, 'admin', ?, 1, ?, ?)
            """,
            (
                settings.admin_email.strip().lower(),
                settings.admin_username.strip(),
                hash_password(settings.admin_password),
                now,
                now,
            ),
        )
        logger.info("Created default admin user '%s'", settings.admin_username)


def get_user_by_login(login: str) -> dict[str, Any] | None:
    normalized = login.strip()
    if not normalized:
        return None

    with get_app_db() as conn:
        row = conn.execute(
            f"""
            SELECT {_USER_COLUMNS}, password_hash
            FROM users
            WHERE lower(username) = lower(?) OR lower(email) = lower(?)
            LIMIT 1
            """,
            (normalized, normalized),
        ).fetchone()

    return _dict_from_row(row)


def get_user_by_id(user_id: int) -> dict[str, Any] | None:
    with get_app_db() as conn:
        row = conn.execute(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users
            WHERE id = ?
            LIMIT 1
            """,
            (user_id,),
        ).fetchone()

    return _dict_from_row(row)


def touch_user_login(user_id: int) -> None:
    now = utc_now_iso()
    with get_app_db() as conn:
        conn.execute(
            "UPDATE users SET last_login_at = ?, updated_at = ? WHERE id = ?",
            (now, now, user_id),
        )


def list_users(role: str | None = None) -> list[dict[str, Any]]:
    sql = f"SELECT {_USER_COLUMNS} FROM users"
    params: tuple[Any, ...] = ()
    if role:
        sql += " WHERE role = ?"
        params = (role,)
    sql += " ORDER BY username COLLATE NOCASE ASC"

    with get_app_db() as conn:
        rows = conn.execute(sql, params).fetchall()

    return [_dict_from_row(row) for row in rows if row is not None]


def list_usernames_by_role(role: str) -> list[str]:
    return [
        str(user.get("username") or "")
        for user in list_users(role)
        if user.get("is_active") and str(user.get("username") or "").strip()
    ]


def create_user(email: str, username: str, password: str, role: str) -> dict[str, Any]:
    normalized_email = email.strip().lower()
    normalized_username = username.strip()
    if not normalized_email or not normalized_username:
        raise ValueError("email and username are required")
    if role not in STAFF_ROLES:
        raise ValueError(f"role must be one of: {', '.join(STAFF_ROLES)}")

    now = utc_now_iso()
    with get_app_db() as conn:
        exists = conn.execute(
            "SELECT id FROM users WHERE lower(email) = lower(?) OR lower(username) = lower(?) LIMIT 1",
            (normalized_email, normalized_username),
        ).fetchone()
        if exists:
            raise ValueError("user with same email or username already exists")

        cursor = conn.execute(
            """
            INSERT INTO users (email, username, role, password_hash, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, 1, ?, ?)
            """,
            (normalized_email, normalized_username, role, hash_password(password), now, now),
        )
        user_id = int(cursor.lastrowid)

    user = get_user_by_id(user_id)
    if not user:
        raise ValueError("failed to create user")
    logger.info("Created %s user '%s'", role, normalized_username)
    return user


def set_user_active(user_id: int, is_active: bool) -> None:
    now = utc_now_iso()
    with get_app_db() as conn:
        conn.execute(
            "UPDATE users SET is_active = ?, updated_at = ? WHERE id = ? AND role != 'admin'",
            (1 if is_active else 0, now, user_id),
        )
