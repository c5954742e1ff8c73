from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone

from emovers.config import ChallengePurpose, Settings
from emovers.logging import get_logger
from emovers.service.errors import BadRequestError
from emovers.storage.models import User

logger = get_logger(__name__)


class ChallengeError(BadRequestError):
    """Base for one-time code failures; all surface as 400s."""


class ChallengeNotFoundError(ChallengeError):
    def __init__(self, message: str = "OTP not found. Please request a new one.") -> None:
        super().__init__(message)


class ChallengeInvalidError(ChallengeError):
    def __init__(self, message: str = "Invalid OTP") -> None:
        super().__init__(message)


class ChallengeExpiredError(ChallengeError):
    def __init__(self, message: str = "OTP expired. Please request a new one.") -> None:
        super().__init__(message)


class ChallengeEngine:
    """Issues and checks numeric one-time codes per ``(user, purpose)``.

    Issuing replaces any outstanding code for the same purpose and leaves the
    other purposes alone. A code is consumed at most once: the store clears
    the slot only if it still holds the same unexpired code, so two
    concurrent verifications cannot both succeed.
    """

    def __init__(self, store, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _generate_code(self) -> str:
        digits = self.settings.otp_digits
        return str(secrets.randbelow(10**digits)).zfill(digits)

    def issue(self, user: User, purpose: ChallengePurpose) -> str:
        code = self._generate_code()
        ttl = timedelta(minutes=self.settings.otp_ttl_minutes(purpose))
        self.store.set_challenge(user.id, purpose, code, self._now() + ttl)
        self.logger.info("challenge_issued", user_id=user.id, purpose=purpose.value)
        return code

    def verify(self, user: User, supplied_code: str, purpose: ChallengePurpose) -> None:
        """Consume the outstanding code or raise a ``ChallengeError``.

        An expired code stays stored until it is replaced by a new issue.
        """
        challenge = self.store.get_challenge(user.id, purpose)
        if not challenge:
            self.logger.info("challenge_missing", user_id=user.id, purpose=purpose.value)
            raise ChallengeNotFoundError()
        supplied = (supplied_code or "").strip()
        if not hmac.compare_digest(challenge.code.encode(), supplied.encode()):
            self.logger.info("challenge_mismatch", user_id=user.id, purpose=purpose.value)
            raise ChallengeInvalidError()
        now = self._now()
        if challenge.is_expired(now):
            self.logger.info("challenge_expired", user_id=user.id, purpose=purpose.value)
            raise ChallengeExpiredError()
        if not self.store.consume_challenge(user.id, purpose, supplied, now):
            # another request consumed or replaced it first
            self.logger.warning("challenge_consume_lost", user_id=user.id, purpose=purpose.value)
            raise ChallengeNotFoundError()
        self.logger.info("challenge_consumed", user_id=user.id, purpose=purpose.value)
