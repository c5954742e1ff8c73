from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from emovers.config import Settings
from emovers.logging import get_logger
from emovers.service.errors import AuthenticationError
from emovers.storage.models import TokenClaims, User

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenIssuer:
    """Mints and checks HS256 access/refresh pairs.

    Access and refresh tokens are signed with different secrets and carry a
    ``token_type`` claim, so neither can stand in for the other.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._secrets = {
            ACCESS: settings.jwt_secret.encode(),
            REFRESH: settings.jwt_refresh_secret.encode(),
        }
        # Allowance for small clock skew across nodes
        self._clock_skew_leeway = timedelta(seconds=30)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str, token_type: str) -> str:
        digest = hmac.new(
            self._secrets[token_type], signing_input.encode(), hashlib.sha256
        ).digest()
        return self._encode_segment(digest)

    def _encode_jwt(self, payload: dict[str, Any], token_type: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, token_type)}"

    def _decode_jwt(self, token: str, token_type: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            return None

        # Pin the algorithm; anything else (including "none") is rejected
        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", token_type=token_type)
            return None

        signing_input = f"{header_b64}.{payload_b64}"
        expected_sig = self._sign(signing_input, token_type).encode()
        if not hmac.compare_digest(expected_sig, sig_b64.encode("utf-8", "surrogatepass")):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.settings.jwt_audience in aud
        else:
            valid_aud = aud == self.settings.jwt_audience
        if not valid_aud:
            return None
        if payload.get("token_type") != token_type:
            return None
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            return None
        now_ts = self._now().timestamp()
        if exp_ts <= now_ts - self._clock_skew_leeway.total_seconds():
            return None
        return payload

    def _claims(self, payload: dict[str, Any]) -> Optional[TokenClaims]:
        try:
            return TokenClaims(
                sub=int(payload["sub"]),
                email=str(payload.get("email", "")),
                role=str(payload.get("role", "")),
                token_type=payload["token_type"],
                jti=str(payload.get("jti", "")),
                iat=int(payload.get("iat", 0)),
                exp=int(payload["exp"]),
                ver=int(payload.get("ver", 0)),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def _payload(self, user: User, token_type: str, issued: datetime, ttl_minutes: int) -> dict[str, Any]:
        return {
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "sub": str(user.id),
            "email": user.email,
            "role": user.role.value,
            "token_type": token_type,
            "jti": str(uuid.uuid4()),
            "ver": user.token_version,
            "iat": int(issued.timestamp()),
            "exp": int((issued + timedelta(minutes=ttl_minutes)).timestamp()),
        }

    def issue_token_pair(self, user: User) -> dict[str, str]:
        now = self._now()
        access_payload = self._payload(
            user, ACCESS, now, self.settings.access_token_ttl_minutes
        )
        refresh_payload = self._payload(
            user, REFRESH, now, self.settings.refresh_token_ttl_minutes
        )
        return {
            "access_token": self._encode_jwt(access_payload, ACCESS),
            "refresh_token": self._encode_jwt(refresh_payload, REFRESH),
            "token_type": "bearer",
            "expires_at": datetime.fromtimestamp(
                access_payload["exp"], tz=timezone.utc
            ).isoformat(),
        }

    def _verify(self, token: str, token_type: str, message: str) -> TokenClaims:
        payload = self._decode_jwt(token, token_type) if token else None
        claims = self._claims(payload) if payload else None
        if claims is None:
            raise AuthenticationError(message)
        return claims

    def verify_access(self, token: str) -> TokenClaims:
        return self._verify(token, ACCESS, "Invalid or expired token")

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._verify(token, REFRESH, "Invalid refresh token")

    def remaining_ttl(self, claims: TokenClaims) -> int:
        """Seconds left before ``claims`` expire, never negative."""
        return max(int(claims.exp - self._now().timestamp()), 0)
