from __future__ import annotations

from dataclasses import replace

import pytest

from attendance_monitor import app_db, security


@pytest.fixture
def user_store(monkeypatch, tmp_path):
    monkeypatch.setattr(
        app_db,
        "settings",
        replace(
            app_db.settings,
            app_db_path=str(tmp_path / "data" / "app.db"),
            admin_username="admin",
            admin_email="Admin@Local",
            admin_password="admin-pass",
        ),
    )
    monkeypatch.setattr(app_db, "hash_password", lambda password: security.hash_password(password, rounds=4))
    app_db.init_app_db()
    return app_db


def test_init_creates_single_default_admin(user_store):
    user_store.init_app_db()

    admins = user_store.list_users("admin")
    assert len(admins) == 1
    assert admins[0]["username"] == "admin"
    assert admins[0]["email"] == "admin@local"


def test_login_lookup_matches_username_or_email(user_store):
    by_name = user_store.get_user_by_login("ADMIN")
    by_email = user_store.get_user_by_login("admin@local")

    assert by_name["id"] == by_email["id"]
    assert security.verify_password("admin-pass", by_name["password_hash"])
    assert "password_hash" not in user_store.get_user_by_id(by_name["id"])
    assert user_store.get_user_by_login("   ") is None


def test_create_user_and_role_listing(user_store):
    user_store.create_user("ana@example.com", "Ana", "secret-123", "preparer")
    user_store.create_user("ben@example.com", "Ben", "secret-123", "checker")

    assert user_store.list_usernames_by_role("preparer") == ["Ana"]
    assert user_store.list_usernames_by_role("checker") == ["Ben"]


def test_create_user_rejects_duplicates_and_admin_role(user_store):
    user_store.create_user("ana@example.com", "Ana", "secret-123", "preparer")

    with pytest.raises(ValueError):
        user_store.create_user("ANA@example.com", "Other", "secret-123", "preparer")
    with pytest.raises(ValueError):
        user_store.create_user("root@example.com", "root", "secret-123", "admin")


def test_inactive_users_drop_out_of_lookups(user_store):
    user = user_store.create_user("ana@example.com", "Ana", "secret-123", "preparer")

    user_store.set_user_active(user["id"], False)

    assert user_store.list_usernames_by_role("preparer") == []
    assert not user_store.get_user_by_id(user["id"])["is_active"]


def test_admin_cannot_be_deactivated(user_store):
    admin = user_store.get_user_by_login("admin")

    user_store.set_user_active(admin["id"], False)

    assert user_store.get_user_by_id(admin["id"])["is_active"] == 1


def test_touch_login_records_timestamp(user_store):
    admin = user_store.get_user_by_login("admin")
    assert admin["last_login_at"] is None

    user_store.touch_user_login(admin["id"])

    assert user_store.get_user_by_id(admin["id"])["last_login_at"]
