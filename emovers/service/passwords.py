from __future__ import annotations

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from emovers.logging import get_logger

logger = get_logger(__name__)


class PasswordHasher:
    """argon2id hashing for stored credentials.

    Federated-only accounts store an empty hash; ``verify`` rejects it so a
    blank password can never match.
    """

    def __init__(self) -> None:
        self._hasher = _Argon2Hasher(type=Type.ID)

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, stored_hash: str) -> bool:
        if not stored_hash:
            return False
        try:
            return self._hasher.verify(stored_hash, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unreadable")
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        if not stored_hash:
            return False
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHash:
            return False
