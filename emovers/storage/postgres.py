from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

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

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        email TEXT NOT NULL,
        password_hash TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        first_name TEXT,
        last_name TEXT,
        phone TEXT,
        role TEXT NOT NULL DEFAULT 'USER',
        status TEXT NOT NULL DEFAULT 'PENDING_VERIFICATION',
        email_verified BOOLEAN NOT NULL DEFAULT FALSE,
        mfa_enabled BOOLEAN NOT NULL DEFAULT FALSE,
        last_login_at TIMESTAMPTZ,
        google_id TEXT UNIQUE,
        profile_picture TEXT,
        is_email BOOLEAN NOT NULL DEFAULT TRUE,
        is_notification BOOLEAN NOT NULL DEFAULT TRUE,
        token_version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS users_email_lower_idx ON users (lower(email))",
    """
    CREATE TABLE IF NOT EXISTS user_challenges (
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        purpose TEXT NOT NULL,
        code TEXT NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (user_id, purpose)
    )
    """,
)


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class PostgresStore:
    """Postgres-backed user and challenge store."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``users`` and ``user_challenges`` tables if missing."""

        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=int(row["id"]),
            email=row["email"],
            password_hash=row.get("password_hash") or "",
            name=row.get("name") or "",
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            phone=row.get("phone"),
            role=UserRole(row.get("role") or UserRole.USER.value),
            status=UserStatus(row.get("status") or UserStatus.PENDING_VERIFICATION.value),
            email_verified=bool(row.get("email_verified", False)),
            mfa_enabled=bool(row.get("mfa_enabled", False)),
            last_login_at=row.get("last_login_at"),
            google_id=row.get("google_id"),
            profile_picture=row.get("profile_picture"),
            is_email=bool(row.get("is_email", True)),
            is_notification=bool(row.get("is_notification", True)),
            token_version=int(row.get("token_version") or 0),
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    @staticmethod
    def _unique_field(exc: errors.UniqueViolation) -> str:
        constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
        return "google_id" if "google" in constraint else "email"

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (email, password_hash, name, first_name, last_name, phone,
                                       role, status, email_verified, google_id, profile_picture)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        email.strip().lower(),
                        password_hash,
                        name,
                        first_name,
                        last_name,
                        phone,
                        _db_value(role),
                        _db_value(status),
                        email_verified,
                        google_id,
                        profile_picture,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = self._unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._user_from_row(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = %s", (user_id,)).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE lower(email) = %s",
                (email.strip().lower(),),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def list_users(self, limit: int = 100) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY created_at DESC LIMIT %s", (limit,)
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

    def update_user(self, user_id: int, **fields) -> Optional[User]:
        unknown = set(fields) - USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update user fields: {sorted(unknown)}")
        if not fields:
            return self.get_user(user_id)
        # column names come from USER_MUTABLE_FIELDS only
        columns = sorted(fields)
        assignments = ", ".join(f"{col} = %s" for col in columns)
        params = [_db_value(fields[col]) for col in columns]
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE users SET {assignments}, updated_at = now() WHERE id = %s RETURNING *",
                    (*params, user_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = self._unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._user_from_row(row) if row else None

    def bump_token_version(self, user_id: int) -> Optional[int]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE users SET token_version = token_version + 1, updated_at = now()
                WHERE id = %s RETURNING token_version
                """,
                (user_id,),
            ).fetchone()
        return int(row["token_version"]) if row else None

    def delete_user(self, user_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "DELETE FROM users WHERE id = %s RETURNING id", (user_id,)
            ).fetchone()
        return row is not None

    # challenges
    def set_challenge(
        self,
        user_id: int,
        purpose: ChallengePurpose,
        code: str,
        expires_at: datetime,
    ) -> Challenge:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO user_challenges (user_id, purpose, code, expires_at, created_at)
                    VALUES (%s, %s, %s, %s, now())
                    ON CONFLICT (user_id, purpose) DO UPDATE
                    SET code = EXCLUDED.code,
                        expires_at = EXCLUDED.expires_at,
                        created_at = EXCLUDED.created_at
                    RETURNING created_at
                    """,
                    (user_id, purpose.value, code, expires_at),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user not found for challenge", {"user_id": user_id})
        return Challenge(
            user_id=user_id,
            purpose=purpose,
            code=code,
            expires_at=expires_at,
            created_at=row["created_at"] if row else utcnow(),
        )

    def get_challenge(
        self, user_id: int, purpose: ChallengePurpose
    ) -> Optional[Challenge]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_challenges WHERE user_id = %s AND purpose = %s",
                (user_id, purpose.value),
            ).fetchone()
        if not row:
            return None
        return Challenge(
            user_id=int(row["user_id"]),
            purpose=ChallengePurpose(row["purpose"]),
            code=row["code"],
            expires_at=row["expires_at"],
            created_at=row.get("created_at") or utcnow(),
        )

    def consume_challenge(
        self,
        user_id: int,
        purpose: ChallengePurpose,
        code: str,
        now: datetime,
    ) -> bool:
        """Single conditional delete; only one concurrent caller can win."""
        with self._connect() as conn:
            row = conn.execute(
                """
                DELETE FROM user_challenges
                WHERE user_id = %s AND purpose = %s AND code = %s AND expires_at >= %s
                RETURNING user_id
                """,
                (user_id, purpose.value, code, now),
            ).fetchone()
        return row is not None

    def clear_challenge(self, user_id: int, purpose: ChallengePurpose) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM user_challenges WHERE user_id = %s AND purpose = %s",
                (user_id, purpose.value),
            )
