from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from emovers.api.schemas import (
    ChangePasswordRequest,
    EmailOnlyRequest,
    Envelope,
    GoogleAuthRequest,
    LoginRequest,
    OtpRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from emovers.service.auth import AuthContext
from emovers.service.errors import AuthenticationError
from emovers.service.runtime import get_runtime

router = APIRouter(prefix="/v1")


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    token = _extract_bearer(authorization)
    if not token:
        raise AuthenticationError("Authentication required")
    return await get_runtime().auth.authenticate(token)


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create a pending account and email a verification code.

    Raises:
        403: If signup is disabled in settings
        409: If the email is already registered
    """
    result = await get_runtime().auth.register(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    return Envelope.from_result(result)


@router.post("/auth/verify-email", response_model=Envelope, tags=["auth"])
async def verify_email(body: OtpRequest):
    result = await get_runtime().auth.verify_email(body.email, body.otp)
    return Envelope.from_result(result)


@router.post("/auth/resend-verification", response_model=Envelope, tags=["auth"])
async def resend_verification(body: EmailOnlyRequest):
    result = await get_runtime().auth.resend_verification(body.email)
    return Envelope.from_result(result)


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Password login.

    Returns a token pair, or ``mfa_required`` with no tokens when the account
    has an emailed second factor; finish with ``/auth/verify-otp``.
    """
    result = await get_runtime().auth.login(body.email, body.password)
    return Envelope.from_result(result)


@router.post("/auth/send-otp", response_model=Envelope, tags=["auth"])
async def send_otp(body: EmailOnlyRequest):
    result = await get_runtime().auth.send_otp(body.email)
    return Envelope.from_result(result)


@router.post("/auth/verify-otp", response_model=Envelope, tags=["auth"])
async def verify_otp(body: OtpRequest):
    result = await get_runtime().auth.verify_otp(body.email, body.otp)
    return Envelope.from_result(result)


@router.post("/auth/forgot-password", response_model=Envelope, tags=["auth"])
async def forgot_password(body: EmailOnlyRequest):
    """Always answers with the same message whether or not the email exists."""
    result = await get_runtime().auth.forgot_password(body.email)
    return Envelope.from_result(result)


@router.post("/auth/reset-password", response_model=Envelope, tags=["auth"])
async def reset_password(body: ResetPasswordRequest):
    result = await get_runtime().auth.reset_password(
        body.email, body.otp, body.new_password, body.confirm_password
    )
    return Envelope.from_result(result)


@router.post("/auth/change-password", response_model=Envelope, tags=["auth"])
async def change_password(
    body: ChangePasswordRequest, principal: AuthContext = Depends(get_user)
):
    result = await get_runtime().auth.change_password(
        principal.user_id, body.current_password, body.new_password
    )
    return Envelope.from_result(result)


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(body: RefreshRequest):
    result = await get_runtime().auth.refresh_token(body.refresh_token)
    return Envelope.from_result(result)


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_user)):
    result = await get_runtime().auth.logout(principal.token)
    return Envelope.from_result(result)


@router.post("/auth/logout-all", response_model=Envelope, tags=["auth"])
async def logout_all(principal: AuthContext = Depends(get_user)):
    result = await get_runtime().auth.logout_all(principal.user_id, principal.token)
    return Envelope.from_result(result)


@router.post("/auth/google/callback", response_model=Envelope, tags=["auth"])
async def google_callback(body: GoogleAuthRequest):
    """Sign in or sign up with a Google access token."""
    result = await get_runtime().federated.reconcile(body.token, role=body.role)
    return Envelope.from_result(result)


@router.get("/auth/check", response_model=Envelope, tags=["auth"])
async def check_auth(principal: AuthContext = Depends(get_user)):
    return Envelope(
        status="success",
        message="Authenticated",
        data={
            "authenticated": True,
            "user": {
                "id": principal.user_id,
                "email": principal.email,
                "role": principal.role,
                "email_verified": principal.email_verified,
            },
        },
    )


@router.get("/me", response_model=Envelope, tags=["auth"])
async def get_me(principal: AuthContext = Depends(get_user)):
    result = await get_runtime().auth.get_profile(principal.user_id)
    return Envelope.from_result(result)
