"""Tests for argon2id password hashing."""

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type

from emovers.service.passwords import PasswordHasher


class TestPasswordHasher:
    def test_hash_is_not_plaintext(self):
        """Hashing never returns the plaintext."""
        hasher = PasswordHasher()
        digest = hasher.hash("TestPassword123!")
        assert digest != "TestPassword123!"
        assert digest.startswith("$argon2id$")

    def test_same_password_produces_different_hashes(self):
        """Hashes are salted."""
        hasher = PasswordHasher()
        assert hasher.hash("TestPassword123!") != hasher.hash("TestPassword123!")

    def test_verify_accepts_correct_password(self):
        hasher = PasswordHasher()
        digest = hasher.hash("TestPassword123!")
        assert hasher.verify("TestPassword123!", digest) is True

    def test_verify_rejects_wrong_password(self):
        hasher = PasswordHasher()
        digest = hasher.hash("TestPassword123!")
        assert hasher.verify("WrongPassword123!", digest) is False

    def test_empty_hash_never_matches(self):
        """Federated-only accounts store an empty hash; nothing may match it."""
        hasher = PasswordHasher()
        assert hasher.verify("", "") is False
        assert hasher.verify("anything", "") is False

    def test_malformed_hash_returns_false(self):
        """A corrupt stored hash is a failed login, not an exception."""
        hasher = PasswordHasher()
        assert hasher.verify("TestPassword123!", "not-a-hash") is False
        assert hasher.verify("TestPassword123!", "$2b$12$legacybcrypthashvalue") is False

    def test_needs_rehash_for_weaker_parameters(self):
        """Hashes made with cheaper parameters are flagged for upgrade."""
        weak = Argon2Hasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
        digest = weak.hash("TestPassword123!")
        hasher = PasswordHasher()
        assert hasher.needs_rehash(digest) is True
        assert hasher.needs_rehash(hasher.hash("TestPassword123!")) is False

    def test_needs_rehash_ignores_empty_and_invalid(self):
        hasher = PasswordHasher()
        assert hasher.needs_rehash("") is False
        assert hasher.needs_rehash("garbage") is False
