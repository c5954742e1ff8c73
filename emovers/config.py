from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from emovers.logging import get_logger

logger = get_logger(__name__)


class ChallengePurpose(str, Enum):
    """What a one-time code proves. Each purpose owns its own challenge slot."""

    EMAIL_VERIFICATION = "email_verification"
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the credential service, read from env and .env."""

    database_url: str = env_field(
        "postgresql://localhost:5432/emovers", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors; permits the in-memory revocation cache.",
    )
    allow_signup: bool = env_field(True, "ALLOW_SIGNUP")
    # Tokens
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_refresh_secret: str | None = env_field(None, "JWT_REFRESH_SECRET")
    jwt_issuer: str = env_field("emovers", "JWT_ISSUER")
    jwt_audience: str = env_field("emovers-clients", "JWT_AUDIENCE")
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES")
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES"
    )
    # One-time codes
    otp_digits: int = env_field(6, "OTP_DIGITS")
    login_otp_ttl_minutes: int = env_field(5, "LOGIN_OTP_TTL_MINUTES")
    verification_otp_ttl_minutes: int = env_field(10, "VERIFICATION_OTP_TTL_MINUTES")
    reset_otp_ttl_minutes: int = env_field(10, "RESET_OTP_TTL_MINUTES")
    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("E-movers", "EMAIL_FROM_NAME")
    app_base_url: str = env_field("http://localhost:8000", "APP_BASE_URL")
    # Google identity
    google_client_id: str | None = env_field(None, "GOOGLE_CLIENT_ID")
    google_userinfo_url: str = env_field(
        "https://www.googleapis.com/oauth2/v3/userinfo", "GOOGLE_USERINFO_URL"
    )
    google_timeout_seconds: float = env_field(10.0, "GOOGLE_TIMEOUT_SECONDS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("otp_digits")
    @classmethod
    def _validate_otp_digits(cls, value: int) -> int:
        if value < 4 or value > 10:
            raise ValueError("OTP_DIGITS must be between 4 and 10")
        return value

    @field_validator(
        "access_token_ttl_minutes",
        "refresh_token_ttl_minutes",
        "login_otp_ttl_minutes",
        "verification_otp_ttl_minutes",
        "reset_otp_ttl_minutes",
    )
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("TTL settings must be positive")
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secrets(self) -> "Settings":
        if not self.jwt_secret:
            # Ephemeral: tokens stop verifying on restart
            logger.warning("jwt_secret_generated", setting="JWT_SECRET")
            self.jwt_secret = secrets.token_urlsafe(64)
        if not self.jwt_refresh_secret:
            logger.warning("jwt_secret_generated", setting="JWT_REFRESH_SECRET")
            self.jwt_refresh_secret = secrets.token_urlsafe(64)
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        return self

    def otp_ttl_minutes(self, purpose: ChallengePurpose) -> int:
        if purpose == ChallengePurpose.LOGIN:
            return self.login_otp_ttl_minutes
        if purpose == ChallengePurpose.PASSWORD_RESET:
            return self.reset_otp_ttl_minutes
        return self.verification_otp_ttl_minutes


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
