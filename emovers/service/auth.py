from __future__ import annotations

import asyncio

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from redis.exceptions import RedisError

from emovers.config import ChallengePurpose, Settings
from emovers.logging import get_logger, hash_email
from emovers.service import email as mail_kinds
from emovers.service.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    ServerError,
)
from emovers.service.otp import ChallengeEngine
from emovers.service.passwords import PasswordHasher
from emovers.service.tokens import TokenIssuer
from emovers.storage.errors import ConstraintViolation
from emovers.storage.models import Challenge, User, UserRole, UserStatus, utcnow

logger = get_logger(__name__)

FORGOT_PASSWORD_MESSAGE = (
    "If an account with this email exists, a password reset OTP has been sent."
)


class CredentialStore(Protocol):
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
    ) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def update_user(self, user_id: int, **fields: Any) -> Optional[User]: ...

    def delete_user(self, user_id: int) -> bool: ...

    def bump_token_version(self, user_id: int) -> Optional[int]: ...

    def set_challenge(
        self, user_id: int, purpose: ChallengePurpose, code: str, expires_at: datetime
    ) -> Challenge: ...

    def get_challenge(
        self, user_id: int, purpose: ChallengePurpose
    ) -> Optional[Challenge]: ...

    def consume_challenge(
        self, user_id: int, purpose: ChallengePurpose, code: str, now: datetime
    ) -> bool: ...

    def clear_challenge(self, user_id: int, purpose: ChallengePurpose) -> None: ...


class Mailer(Protocol):
    def send(self, to: str, template_kind: str, params: Optional[Dict[str, Any]] = None) -> bool: ...


@dataclass
class AuthContext:
    user_id: int
    email: str
    role: str
    email_verified: bool
    token: str


def _success(message: str, data: Any = None) -> Dict[str, Any]:
    return {"status": "success", "message": message, "data": data}


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class CredentialService:
    """Registration, login, challenge and token flows for local accounts.

    Every public method returns a success envelope or raises a
    ``ServiceError``. Outbound mail is best effort and never undoes a state
    change that already happened.
    """

    def __init__(
        self,
        store: CredentialStore,
        cache,
        settings: Settings,
        *,
        mailer: Optional[Mailer] = None,
        hasher: Optional[PasswordHasher] = None,
        challenges: Optional[ChallengeEngine] = None,
        tokens: Optional[TokenIssuer] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings
        self.mailer = mailer
        self.hasher = hasher or PasswordHasher()
        self.challenges = challenges or ChallengeEngine(store, settings)
        self.tokens = tokens or TokenIssuer(settings)
        self.logger = logger

    # helpers
    async def _dispatch_mail(self, user: User, template_kind: str, **params: Any) -> bool:
        if not self.mailer:
            return False
        params.setdefault("name", user.first_name or user.name)
        try:
            # smtplib blocks; keep it off the event loop
            sent = await asyncio.to_thread(self.mailer.send, user.email, template_kind, params)
        except Exception as exc:
            self.logger.warning(
                "mail_dispatch_failed",
                user_id=user.id,
                template_kind=template_kind,
                error_type=type(exc).__name__,
            )
            return False
        if not sent:
            self.logger.warning(
                "mail_not_delivered", user_id=user.id, template_kind=template_kind
            )
        return bool(sent)

    async def _send_challenge(self, user: User, purpose: ChallengePurpose, template_kind: str) -> None:
        code = self.challenges.issue(user, purpose)
        await self._dispatch_mail(
            user,
            template_kind,
            otp=code,
            ttl_minutes=self.settings.otp_ttl_minutes(purpose),
        )

    def _stamp_login(self, user: User) -> User:
        return self.store.update_user(user.id, last_login_at=utcnow()) or user

    def _session_payload(self, user: User) -> Dict[str, Any]:
        return {"user": user.public_view(), **self.tokens.issue_token_pair(user)}

    def _ensure_not_suspended(self, user: User) -> None:
        if user.status == UserStatus.SUSPENDED:
            self.logger.warning("suspended_account_rejected", user_id=user.id)
            raise AuthenticationError("Account suspended")

    def _require_user_by_email(self, email: str) -> User:
        user = self.store.get_user_by_email(_normalize_email(email))
        if not user:
            raise BadRequestError("User not found")
        return user

    # registration
    async def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self.settings.allow_signup:
            raise ForbiddenError("Signup is disabled")
        normalized = _normalize_email(email)
        if not normalized or not password:
            raise BadRequestError("Email and password are required")
        if self.store.get_user_by_email(normalized):
            raise ConflictError("User with this email already exists")
        name = f"{first_name or ''} {last_name or ''}".strip()
        try:
            user = self.store.create_user(
                normalized,
                self.hasher.hash(password),
                name=name,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
            )
        except ConstraintViolation:
            # concurrent registration won the unique index
            raise ConflictError("User with this email already exists")
        if user.is_email:
            await self._send_challenge(
                user, ChallengePurpose.EMAIL_VERIFICATION, mail_kinds.EMAIL_VERIFICATION
            )
        else:
            self.challenges.issue(user, ChallengePurpose.EMAIL_VERIFICATION)
        self.logger.info("user_registered", user_id=user.id, email_hash=hash_email(normalized))
        return _success(
            "Registration successful. Please check your email for verification OTP.",
            {"user_id": user.id},
        )

    async def resend_verification(self, email: str) -> Dict[str, Any]:
        user = self._require_user_by_email(email)
        if user.email_verified:
            return _success("Email already verified")
        self._ensure_not_suspended(user)
        await self._send_challenge(
            user, ChallengePurpose.EMAIL_VERIFICATION, mail_kinds.EMAIL_VERIFICATION
        )
        return _success("Verification OTP sent successfully.")

    async def verify_email(self, email: str, code: str) -> Dict[str, Any]:
        user = self._require_user_by_email(email)
        if user.email_verified:
            # verified by another path; drop any code still outstanding
            self.store.clear_challenge(user.id, ChallengePurpose.EMAIL_VERIFICATION)
            return _success("Email already verified")
        # a suspended account must not verify its way back to ACTIVE
        self._ensure_not_suspended(user)
        self.challenges.verify(user, code, ChallengePurpose.EMAIL_VERIFICATION)
        user = self.store.update_user(
            user.id, email_verified=True, status=UserStatus.ACTIVE
        ) or user
        self.logger.info("email_verified", user_id=user.id)
        await self._dispatch_mail(user, mail_kinds.WELCOME)
        return _success("Email verified successfully")

    # login
    async def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.store.get_user_by_email(_normalize_email(email))
        if not user:
            self.logger.info("login_failed", reason="unknown_email", email_hash=hash_email(email))
            raise AuthenticationError("No account found with this email.")
        if not user.email_verified:
            self.logger.info("login_failed", reason="unverified", user_id=user.id)
            raise AuthenticationError(
                "Email not verified. Please check your email for verification OTP."
            )
        if not self.hasher.verify(password, user.password_hash):
            self.logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise AuthenticationError("Incorrect password.")
        self._ensure_not_suspended(user)
        if self.hasher.needs_rehash(user.password_hash):
            user = self.store.update_user(
                user.id, password_hash=self.hasher.hash(password)
            ) or user

        if user.mfa_enabled:
            await self._send_challenge(user, ChallengePurpose.LOGIN, mail_kinds.LOGIN_OTP)
            self.logger.info("login_mfa_challenge_sent", user_id=user.id)
            return _success(
                "OTP sent to your email for verification.",
                {"mfa_required": True, "email": user.email},
            )

        user = self._stamp_login(user)
        self.logger.info("login_succeeded", user_id=user.id)
        return _success("Successfully logged in.", self._session_payload(user))

    async def send_otp(self, email: str) -> Dict[str, Any]:
        user = self._require_user_by_email(email)
        self._ensure_not_suspended(user)
        await self._send_challenge(user, ChallengePurpose.LOGIN, mail_kinds.LOGIN_OTP)
        return _success("OTP sent successfully.")

    async def verify_otp(self, email: str, code: str) -> Dict[str, Any]:
        user = self._require_user_by_email(email)
        self._ensure_not_suspended(user)
        self.challenges.verify(user, code, ChallengePurpose.LOGIN)
        user = self._stamp_login(user)
        self.logger.info("login_succeeded", user_id=user.id, second_factor=True)
        return _success("OTP verified successfully.", self._session_payload(user))

    # passwords
    async def forgot_password(self, email: str) -> Dict[str, Any]:
        user = self.store.get_user_by_email(_normalize_email(email))
        if user:
            if user.is_email:
                await self._send_challenge(
                    user, ChallengePurpose.PASSWORD_RESET, mail_kinds.PASSWORD_RESET_OTP
                )
            else:
                self.challenges.issue(user, ChallengePurpose.PASSWORD_RESET)
            self.logger.info("password_reset_requested", user_id=user.id)
        else:
            self.logger.info("password_reset_unknown_email", email_hash=hash_email(email))
        return _success(FORGOT_PASSWORD_MESSAGE)

    async def reset_password(
        self, email: str, code: str, new_password: str, confirm_password: str
    ) -> Dict[str, Any]:
        if new_password != confirm_password:
            raise BadRequestError("Passwords do not match")
        if not new_password:
            raise BadRequestError("Password is required")
        user = self._require_user_by_email(email)
        self.challenges.verify(user, code, ChallengePurpose.PASSWORD_RESET)
        self.store.update_user(user.id, password_hash=self.hasher.hash(new_password))
        self.store.bump_token_version(user.id)
        self.logger.info("password_reset_completed", user_id=user.id)
        return _success("Password reset successfully")

    async def change_password(
        self, user_id: int, current_password: str, new_password: str
    ) -> Dict[str, Any]:
        user = self.store.get_user(user_id)
        if not user:
            raise AuthenticationError("User not found")
        if not self.hasher.verify(current_password, user.password_hash):
            self.logger.info("password_change_rejected", user_id=user.id)
            raise AuthenticationError("Current password is incorrect")
        if not new_password:
            raise BadRequestError("Password is required")
        self.store.update_user(user.id, password_hash=self.hasher.hash(new_password))
        self.store.bump_token_version(user.id)
        self.logger.info("password_changed", user_id=user.id)
        return _success("Password changed successfully")

    # tokens
    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        claims = self.tokens.verify_refresh(refresh_token)
        user = self.store.get_user(claims.sub)
        if (
            not user
            or claims.ver != user.token_version
            or user.status == UserStatus.SUSPENDED
        ):
            self.logger.info("refresh_rejected", subject=claims.sub)
            raise AuthenticationError("Invalid refresh token")
        user = self._stamp_login(user)
        return _success("Token refreshed successfully", self.tokens.issue_token_pair(user))

    async def logout(self, access_token: Optional[str]) -> Dict[str, Any]:
        if not access_token:
            raise AuthenticationError("Token not found")
        claims = self.tokens.verify_access(access_token)
        ttl = self.tokens.remaining_ttl(claims)
        if ttl > 0:
            try:
                await self.cache.denylist_access_token(access_token, ttl)
            except RedisError as exc:
                self.logger.error("access_token_denylist_failed", user_id=claims.sub, error=str(exc))
                raise ServerError("Logout could not be completed")
        self.logger.info("access_token_denylisted", user_id=claims.sub, ttl_seconds=ttl)
        return _success("Logged out successfully")

    async def logout_all(self, user_id: int, access_token: Optional[str] = None) -> Dict[str, Any]:
        version = self.store.bump_token_version(user_id)
        if version is None:
            raise AuthenticationError("User not found")
        if access_token:
            await self.logout(access_token)
        self.logger.info("all_sessions_revoked", user_id=user_id, token_version=version)
        return _success("Logged out from all sessions")

    async def _is_denylisted(self, token: str) -> bool:
        try:
            return await self.cache.is_access_token_denylisted(token)
        except RedisError as exc:
            # Treat as revoked when the cache is unreachable
            self.logger.warning("denylist_check_failed_defaulting_to_revoked", error=str(exc))
            return True

    async def authenticate(self, access_token: Optional[str]) -> AuthContext:
        if not access_token:
            raise AuthenticationError("Authentication required")
        if await self._is_denylisted(access_token):
            raise AuthenticationError("Token has been revoked")
        claims = self.tokens.verify_access(access_token)
        user = self.store.get_user(claims.sub)
        if not user:
            raise AuthenticationError("Invalid or expired token")
        if claims.ver != user.token_version:
            raise AuthenticationError("Token has been revoked")
        self._ensure_not_suspended(user)
        return AuthContext(
            user_id=user.id,
            email=user.email,
            role=user.role.value,
            email_verified=user.email_verified,
            token=access_token,
        )

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        user = self.store.get_user(user_id)
        if not user:
            raise AuthenticationError("User not found")
        return _success("Profile retrieved successfully", user.public_view())
