"""Unit tests for auth/store.py -- UserStore persistence and refresh-token CAS.

Covers:
- create_user() assigns an id and timestamps; duplicates raise IntegrityError
- find_by_username_or_email() matches either identifier, never "everything"
- update_fields() rejects immutable/unknown columns and stamps updated_at
- compare_and_set_refresh_token() swaps only when the expected value matches
"""

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User


def _user(username="alice", email="alice@example.com", **overrides) -> User:
    fields = dict(
        username=username,
        email=email,
        full_name="Alice Liddell",
        avatar_url="https://media.test/a.png",
        password_hash="not-a-real-hash",
    )
    fields.update(overrides)
    return User(**fields)


# ---------------------------------------------------------------------------
# Creation and lookup
# ---------------------------------------------------------------------------


def test_create_user_assigns_id_and_timestamps(store):
    assert store.has_users() is False
    uid = store.create_user(_user())
    user = store.get_by_id(uid)
    assert user is not None
    assert user.id == uid
    assert user.created_at and user.updated_at
    assert user.cover_image_url == ""
    assert user.refresh_token is None
    assert store.has_users() is True


def test_duplicate_username_raises_integrity_error(store):
    store.create_user(_user())
    with pytest.raises(IntegrityError):
        store.create_user(_user(email="other@example.com"))


def test_duplicate_email_raises_integrity_error(store):
    store.create_user(_user())
    with pytest.raises(IntegrityError):
        store.create_user(_user(username="bob"))


def test_find_by_username_or_email_matches_either(store):
    uid = store.create_user(_user())
    assert store.find_by_username_or_email(username="alice").id == uid
    assert store.find_by_username_or_email(email="alice@example.com").id == uid
    assert store.find_by_username_or_email(username="nobody", email="alice@example.com").id == uid
    assert store.find_by_username_or_email(username="nobody") is None


def test_find_with_no_identifiers_returns_none(store):
    store.create_user(_user())
    assert store.find_by_username_or_email() is None
    assert store.find_by_username_or_email(username="", email="") is None


def test_get_by_id_unknown_returns_none(store):
    assert store.get_by_id("0" * 32) is None


def test_email_taken_excludes_own_account(store):
    alice = store.create_user(_user())
    bob = store.create_user(_user(username="bob", email="bob@example.com"))
    assert store.email_taken("alice@example.com") is True
    assert store.email_taken("alice@example.com", exclude_user_id=alice) is False
    assert store.email_taken("alice@example.com", exclude_user_id=bob) is True
    assert store.email_taken("carol@example.com") is False


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def test_update_fields_applies_and_stamps(store):
    uid = store.create_user(_user())
    before = store.get_by_id(uid)
    updated = store.update_fields(uid, full_name="Alice Cooper")
    assert updated.full_name == "Alice Cooper"
    assert updated.updated_at >= before.updated_at
    assert updated.created_at == before.created_at


@pytest.mark.parametrize("field", ["id", "username", "created_at", "not_a_column"])
def test_update_fields_rejects_immutable_or_unknown(store, field):
    uid = store.create_user(_user())
    with pytest.raises(ValueError):
        store.update_fields(uid, **{field: "x"})


def test_update_fields_unknown_user_returns_none(store):
    assert store.update_fields("0" * 32, full_name="Ghost") is None


def test_update_email_to_taken_value_raises_integrity_error(store):
    store.create_user(_user())
    bob = store.create_user(_user(username="bob", email="bob@example.com"))
    with pytest.raises(IntegrityError):
        store.update_fields(bob, email="alice@example.com")


# ---------------------------------------------------------------------------
# Refresh-token compare-and-set
# ---------------------------------------------------------------------------


def test_cas_swaps_when_expected_matches(store):
    uid = store.create_user(_user(refresh_token="r1"))
    assert store.compare_and_set_refresh_token(uid, "r1", "r2") is True
    assert store.get_by_id(uid).refresh_token == "r2"


def test_cas_fails_when_expected_is_stale(store):
    uid = store.create_user(_user(refresh_token="r2"))
    assert store.compare_and_set_refresh_token(uid, "r1", "r3") is False
    assert store.get_by_id(uid).refresh_token == "r2"


def test_cas_fails_after_logout_cleared_token(store):
    uid = store.create_user(_user(refresh_token="r1"))
    store.update_fields(uid, refresh_token=None)
    assert store.compare_and_set_refresh_token(uid, "r1", "r2") is False
    assert store.get_by_id(uid).refresh_token is None


def test_cas_unknown_user_fails(store):
    assert store.compare_and_set_refresh_token("0" * 32, "r1", "r2") is False
