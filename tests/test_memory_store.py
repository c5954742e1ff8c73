"""Tests for the in-memory user and challenge store."""

from datetime import datetime, timedelta, timezone

import pytest

from emovers.config import ChallengePurpose
from emovers.storage.errors import ConstraintViolation
from emovers.storage.memory import MemoryStore
from emovers.storage.models import UserRole, UserStatus


def _now():
    return datetime.now(timezone.utc)


class TestUsers:
    def test_create_assigns_sequential_ids(self):
        store = MemoryStore()
        first = store.create_user("a@example.com")
        second = store.create_user("b@example.com")
        assert (first.id, second.id) == (1, 2)
        assert first.status == UserStatus.PENDING_VERIFICATION
        assert first.role == UserRole.USER
        assert first.email_verified is False

    def test_email_is_case_insensitive_and_unique(self):
        store = MemoryStore()
        store.create_user("Alice@Example.com")
        assert store.get_user_by_email("ALICE@example.COM").email == "alice@example.com"
        with pytest.raises(ConstraintViolation) as exc_info:
            store.create_user("alice@example.com")
        assert exc_info.value.field == "email"

    def test_google_id_is_unique(self):
        store = MemoryStore()
        store.create_user("a@example.com", google_id="g-1")
        with pytest.raises(ConstraintViolation):
            store.create_user("b@example.com", google_id="g-1")

    def test_returned_records_are_copies(self):
        """Mutating a returned user does not change stored state."""
        store = MemoryStore()
        user = store.create_user("a@example.com")
        user.email_verified = True
        assert store.get_user(user.id).email_verified is False

    def test_update_user(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        updated = store.update_user(user.id, email_verified=True, status=UserStatus.ACTIVE)
        assert updated.email_verified is True
        assert store.get_user(user.id).status == UserStatus.ACTIVE
        assert store.update_user(999, name="x") is None

    def test_update_rejects_unknown_fields(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        with pytest.raises(ValueError):
            store.update_user(user.id, token_version=10)
        with pytest.raises(ValueError):
            store.update_user(user.id, id=5)

    def test_bump_token_version(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        assert store.bump_token_version(user.id) == 1
        assert store.bump_token_version(user.id) == 2
        assert store.get_user(user.id).token_version == 2
        assert store.bump_token_version(999) is None

    def test_delete_user_drops_challenges(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        store.set_challenge(user.id, ChallengePurpose.LOGIN, "123456", _now() + timedelta(minutes=5))
        assert store.delete_user(user.id) is True
        assert store.get_user(user.id) is None
        assert store.get_challenge(user.id, ChallengePurpose.LOGIN) is None
        assert store.delete_user(user.id) is False

    def test_list_users_limit(self):
        store = MemoryStore()
        for i in range(5):
            store.create_user(f"user{i}@example.com")
        assert len(store.list_users(limit=3)) == 3


class TestChallenges:
    def test_challenge_for_unknown_user_rejected(self):
        store = MemoryStore()
        with pytest.raises(ConstraintViolation):
            store.set_challenge(7, ChallengePurpose.LOGIN, "123456", _now())

    def test_slots_are_per_purpose(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        expires = _now() + timedelta(minutes=5)
        store.set_challenge(user.id, ChallengePurpose.LOGIN, "111111", expires)
        store.set_challenge(user.id, ChallengePurpose.PASSWORD_RESET, "222222", expires)
        assert store.get_challenge(user.id, ChallengePurpose.LOGIN).code == "111111"
        assert store.get_challenge(user.id, ChallengePurpose.PASSWORD_RESET).code == "222222"

    def test_consume_is_conditional(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        now = _now()
        store.set_challenge(user.id, ChallengePurpose.LOGIN, "111111", now + timedelta(minutes=5))
        assert store.consume_challenge(user.id, ChallengePurpose.LOGIN, "999999", now) is False
        assert store.consume_challenge(user.id, ChallengePurpose.LOGIN, "111111", now) is True
        assert store.consume_challenge(user.id, ChallengePurpose.LOGIN, "111111", now) is False

    def test_consume_refuses_expired(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        now = _now()
        store.set_challenge(user.id, ChallengePurpose.LOGIN, "111111", now - timedelta(seconds=1))
        assert store.consume_challenge(user.id, ChallengePurpose.LOGIN, "111111", now) is False
        assert store.get_challenge(user.id, ChallengePurpose.LOGIN) is not None

    def test_clear_challenge(self):
        store = MemoryStore()
        user = store.create_user("a@example.com")
        store.set_challenge(user.id, ChallengePurpose.LOGIN, "111111", _now())
        store.clear_challenge(user.id, ChallengePurpose.LOGIN)
        store.clear_challenge(user.id, ChallengePurpose.LOGIN)
        assert store.get_challenge(user.id, ChallengePurpose.LOGIN) is None
