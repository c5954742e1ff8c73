from __future__ import annotations

from typing import Any, Optional

import httpx

from emovers.config import Settings
from emovers.logging import get_logger, hash_email
from emovers.service.errors import AuthenticationError, BadRequestError, ForbiddenError
from emovers.service.tokens import TokenIssuer
from emovers.storage.errors import ConstraintViolation
from emovers.storage.models import FederatedIdentity, User, UserRole, UserStatus, utcnow

logger = get_logger(__name__)


class GoogleIdentityVerifier:
    """Resolves a Google access token to the identity Google asserts for it."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.userinfo_url = settings.google_userinfo_url
        self.timeout = settings.google_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=False, transport=self._transport
        )

    async def verify(self, token: str) -> FederatedIdentity:
        if not token:
            raise AuthenticationError("Google token is required")
        try:
            async with self._client() as client:
                response = await client.get(
                    self.userinfo_url,
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                )
                response.raise_for_status()
                userinfo = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("google_userinfo_rejected", status_code=status)
            if status in (400, 401):
                raise AuthenticationError("Invalid or expired Google token")
            raise AuthenticationError("Failed to verify Google token")
        except (httpx.HTTPError, ValueError) as exc:
            # transport failures, timeouts and non-JSON bodies
            logger.warning("google_userinfo_failed", error_type=type(exc).__name__)
            raise AuthenticationError("Failed to verify Google token")

        if not isinstance(userinfo, dict):
            logger.warning("google_userinfo_invalid_format", type=type(userinfo).__name__)
            raise AuthenticationError("Failed to verify Google token")
        email = (userinfo.get("email") or "").strip().lower()
        if not email:
            raise AuthenticationError("Google account does not have a valid email")
        if not _as_bool(userinfo.get("email_verified")):
            raise AuthenticationError("Google email not verified")
        subject_id = userinfo.get("sub")
        if not subject_id:
            raise AuthenticationError("Failed to verify Google token")
        return FederatedIdentity(
            subject_id=str(subject_id),
            email=email,
            email_verified=True,
            name=userinfo.get("name") or "Unknown",
            picture=userinfo.get("picture") or "",
            given_name=userinfo.get("given_name"),
            family_name=userinfo.get("family_name"),
        )


def _as_bool(value: Any) -> bool:
    # userinfo v3 sends a bool; older tokeninfo payloads send "true"/"false"
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


class FederatedIdentityReconciler:
    """Finds or creates the local account behind a verified Google identity."""

    def __init__(self, store, tokens: TokenIssuer, verifier: GoogleIdentityVerifier) -> None:
        self.store = store
        self.tokens = tokens
        self.verifier = verifier
        self.logger = logger

    def _login_existing(self, user: User, identity: FederatedIdentity) -> User:
        if user.status == UserStatus.SUSPENDED:
            raise AuthenticationError("Account suspended")
        updates: dict[str, Any] = {"last_login_at": utcnow()}
        if user.google_id != identity.subject_id:
            updates["google_id"] = identity.subject_id
            updates["profile_picture"] = identity.picture or user.profile_picture
        try:
            updated = self.store.update_user(user.id, **updates)
        except ConstraintViolation:
            # Google subject already linked to a different local account
            self.logger.warning("google_id_link_conflict", user_id=user.id)
            raise AuthenticationError("Google account is linked to another user")
        return updated or user

    async def reconcile(self, token: str, role: Optional[UserRole | str] = None) -> dict[str, Any]:
        if isinstance(role, str) and not isinstance(role, UserRole):
            role = role.upper()
        try:
            requested_role = UserRole(role) if role else UserRole.USER
        except ValueError:
            raise BadRequestError("Unknown role")
        if requested_role != UserRole.USER:
            raise ForbiddenError("Role cannot be self-assigned")
        identity = await self.verifier.verify(token)

        is_new_user = False
        user = self.store.get_user_by_email(identity.email)
        if user:
            user = self._login_existing(user, identity)
        else:
            try:
                user = self.store.create_user(
                    identity.email,
                    "",
                    name=identity.name,
                    first_name=identity.given_name,
                    last_name=identity.family_name,
                    role=requested_role,
                    status=UserStatus.ACTIVE,
                    email_verified=True,
                    google_id=identity.subject_id,
                    profile_picture=identity.picture or None,
                )
                is_new_user = True
            except ConstraintViolation:
                # lost a concurrent first sign-in for the same email
                existing = self.store.get_user_by_email(identity.email)
                if not existing:
                    raise
                user = self._login_existing(existing, identity)
            else:
                user = self.store.update_user(user.id, last_login_at=utcnow()) or user

        self.logger.info(
            "federated_login_succeeded",
            user_id=user.id,
            email_hash=hash_email(user.email),
            is_new_user=is_new_user,
        )
        data = {
            "user": user.public_view(),
            "is_new_user": is_new_user,
            **self.tokens.issue_token_pair(user),
        }
        return {
            "status": "success",
            "message": "Registration successful" if is_new_user else "Login successful",
            "data": data,
        }
