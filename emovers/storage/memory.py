from __future__ import annotations

import hmac
import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from emovers.config import ChallengePurpose
from emovers.logging import get_logger
from emovers.storage.errors import ConstraintViolation
from emovers.storage.models import (
    USER_MUTABLE_FIELDS,
    Challenge,
    User,
    UserRole,
    UserStatus,
    utcnow,
)


class MemoryStore:
    """In-process user store for tests and local development.

    Returns copies of stored records so callers cannot mutate state without
    going through ``update_user``.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.challenges: Dict[Tuple[int, ChallengePurpose], Challenge] = {}
        self._ids = itertools.count(1)
        # RLock so compound operations can nest helper calls
        self._data_lock = threading.RLock()

    def _find_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        return next((u for u in self.users.values() if u.email == normalized), None)

    # users
    def create_user(
        self,
        email: str,
        password_hash: str = "",
        *,
        name: str = "",
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.PENDING_VERIFICATION,
        email_verified: bool = False,
        google_id: Optional[str] = None,
        profile_picture: Optional[str] = None,
    ) -> User:
        with self._data_lock:
            if self._find_by_email(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            if google_id and any(u.google_id == google_id for u in self.users.values()):
                raise ConstraintViolation("google id already linked", {"field": "google_id"})
            user = User(
                id=next(self._ids),
                email=email.strip().lower(),
                password_hash=password_hash,
                name=name,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                role=UserRole(role),
                status=UserStatus(status),
                email_verified=email_verified,
                google_id=google_id,
                profile_picture=profile_picture,
            )
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = self._find_by_email(email)
            return replace(user) if user else None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            ordered = sorted(self.users.values(), key=lambda u: u.created_at, reverse=True)
            return [replace(u) for u in ordered[:limit]]

    def update_user(self, user_id: int, **fields) -> Optional[User]:
        unknown = set(fields) - USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update user fields: {sorted(unknown)}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            google_id = fields.get("google_id")
            if google_id and any(
                u.google_id == google_id and u.id != user_id for u in self.users.values()
            ):
                raise ConstraintViolation("google id already linked", {"field": "google_id"})
            for name, value in fields.items():
                setattr(user, name, value)
            user.updated_at = utcnow()
            return replace(user)

    def bump_token_version(self, user_id: int) -> Optional[int]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.token_version += 1
            user.updated_at = utcnow()
            return user.token_version

    def delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            self.users.pop(user_id, None)
            for key in [k for k in self.challenges if k[0] == user_id]:
                self.challenges.pop(key, None)
            return True

    # challenges
    def set_challenge(
        self,
        user_id: int,
        purpose: ChallengePurpose,
        code: str,
        expires_at: datetime,
    ) -> Challenge:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user not found for challenge", {"user_id": user_id})
            challenge = Challenge(
                user_id=user_id, purpose=purpose, code=code, expires_at=expires_at
            )
            self.challenges[(user_id, purpose)] = challenge
            return replace(challenge)

    def get_challenge(
        self, user_id: int, purpose: ChallengePurpose
    ) -> Optional[Challenge]:
        with self._data_lock:
            challenge = self.challenges.get((user_id, purpose))
            return replace(challenge) if challenge else None

    def consume_challenge(
        self,
        user_id: int,
        purpose: ChallengePurpose,
        code: str,
        now: datetime,
    ) -> bool:
        """Clear the slot only if it still holds ``code`` and has not expired."""
        with self._data_lock:
            challenge = self.challenges.get((user_id, purpose))
            if not challenge or challenge.is_expired(now):
                return False
            if not hmac.compare_digest(challenge.code, code):
                return False
            self.challenges.pop((user_id, purpose), None)
            return True

    def clear_challenge(self, user_id: int, purpose: ChallengePurpose) -> None:
        with self._data_lock:
            self.challenges.pop((user_id, purpose), None)
