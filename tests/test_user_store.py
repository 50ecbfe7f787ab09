"""Unit tests for auth/store.py -- UserStore persistence."""

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User


def _user(email: str = "Person@Example.com") -> User:
    return User(email=email, role="user", hashed_password="$2b$10$hash")


def test_create_assigns_id_and_normalizes_email(user_store):
    created = user_store.create_user(_user())
    assert created.id
    assert created.email == "person@example.com"
    assert created.created_at
    assert created.refresh_token_hash is None


def test_lookup_by_email_is_case_insensitive(user_store):
    created = user_store.create_user(_user())
    assert user_store.get_by_email("PERSON@example.COM").id == created.id
    assert user_store.get_by_email("other@example.com") is None


def test_lookup_by_id(user_store):
    created = user_store.create_user(_user())
    assert user_store.get_by_id(created.id).email == "person@example.com"
    assert user_store.get_by_id("missing") is None


def test_duplicate_email_raises_integrity_error(user_store):
    user_store.create_user(_user("dup@example.com"))
    with pytest.raises(IntegrityError):
        user_store.create_user(_user("DUP@example.com"))


def test_update_user_fields(user_store):
    created = user_store.create_user(_user())
    updated = user_store.update_user(created.id, refresh_token_hash="ab" * 32)
    assert updated.refresh_token_hash == "ab" * 32

    cleared = user_store.update_user(created.id, refresh_token_hash=None)
    assert cleared.refresh_token_hash is None


def test_update_missing_user_returns_none(user_store):
    assert user_store.update_user("missing", role="admin") is None


def test_update_unknown_field_rejected(user_store):
    created = user_store.create_user(_user())
    with pytest.raises(ValueError, match="Unknown user fields"):
        user_store.update_user(created.id, email="new@example.com")


def test_ping(user_store):
    assert user_store.ping() is True
