from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from emovers.config import ChallengePurpose


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


# Columns callers may change through ``update_user``
USER_MUTABLE_FIELDS = frozenset(
    {
        "password_hash",
        "name",
        "first_name",
        "last_name",
        "phone",
        "role",
        "status",
        "email_verified",
        "mfa_enabled",
        "last_login_at",
        "google_id",
        "profile_picture",
        "is_email",
        "is_notification",
    }
)


@dataclass
class User:
    id: int
    email: str
    password_hash: str = ""
    name: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.PENDING_VERIFICATION
    email_verified: bool = False
    mfa_enabled: bool = False
    last_login_at: Optional[datetime] = None
    google_id: Optional[str] = None
    profile_picture: Optional[str] = None
    is_email: bool = True
    is_notification: bool = True
    token_version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def public_view(self) -> Dict[str, Any]:
        """Projection safe to return to clients; never includes the hash."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
            "status": self.status.value,
            "email_verified": self.email_verified,
            "mfa_enabled": self.mfa_enabled,
            "is_email": self.is_email,
            "is_notification": self.is_notification,
            "profile_picture": self.profile_picture,
        }


@dataclass
class Challenge:
    user_id: int
    purpose: ChallengePurpose
    code: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class TokenClaims:
    sub: int
    email: str
    role: str
    token_type: str
    jti: str
    iat: int
    exp: int
    ver: int = 0


@dataclass
class FederatedIdentity:
    subject_id: str
    email: str
    email_verified: bool
    name: str = "Unknown"
    picture: str = ""
    given_name: Optional[str] = None
    family_name: Optional[str] = None
