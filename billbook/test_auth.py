from datetime import timedelta

from sqlalchemy import func, select

from billbook import models
from billbook.auth import (
    create_session,
    delete_session,
    get_password_hash,
    get_session_user,
    verify_password,
)
from billbook.config import settings
from billbook.seed_admin import ensure_admin


def _user(db, email="clerk@billbook.test", role="STAFF"):
    user = models.User(name="Clerk", email=email, hashed_password=get_password_hash("secret123"), role=role)
    db.add(user)
    db.commit()
    return user


def test_password_hash_round_trip():
    hashed = get_password_hash("secret123")
    assert hashed.startswith("pbkdf2_sha256$")
    assert hashed != get_password_hash("secret123")  # salted
    assert verify_password("secret123", hashed)
    assert not verify_password("secret124", hashed)
    assert not verify_password("secret123", "not-a-hash")


def test_session_lookup_and_logout(db):
    user = _user(db)
    sess = create_session(db, user.id)

    assert get_session_user(db, sess.session_id).id == user.id
    assert get_session_user(db, None) is None
    assert get_session_user(db, "unknown") is None

    delete_session(db, sess.session_id)
    assert get_session_user(db, sess.session_id) is None


def test_expired_session_is_removed(db):
    user = _user(db)
    sess = create_session(db, user.id)
    sess.expires = models.utcnow() - timedelta(minutes=1)
    db.commit()

    assert get_session_user(db, sess.session_id) is None
    assert db.scalar(select(func.count()).select_from(models.UserSession)) == 0


def test_sessions_deleted_with_user(db):
    user = _user(db)
    create_session(db, user.id)
    db.delete(user)
    db.commit()
    assert db.scalar(select(func.count()).select_from(models.UserSession)) == 0


def test_ensure_admin_is_idempotent(db, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "Owner@Billbook.test")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "change-me")

    first = ensure_admin(db)
    second = ensure_admin(db)

    assert first.id == second.id
    assert first.role == "ADMIN"
    assert first.email == "owner@billbook.test"
    assert verify_password("change-me", first.hashed_password)
    assert db.scalar(select(func.count()).select_from(models.User)) == 1
