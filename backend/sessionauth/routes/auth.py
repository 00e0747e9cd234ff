# sessionauth/routes/auth.py
from typing import Union

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from sessionauth.core.config import settings
from sessionauth.core.database import get_db
from sessionauth.core.errors import ValidationError
from sessionauth.core.rate_limit import limiter, rate_limiting_disabled
from sessionauth.dependencies.auth import get_client_device, get_presented_tokens, set_token_cookies
from sessionauth.dependencies.email import get_email_dispatcher
from sessionauth.models.two_factor_token import TwoFactorPurpose
from sessionauth.schemas.auth import (
    EmailIn,
    LoginIn,
    LoginOut,
    MessageOut,
    RegisterIn,
    RegisterOut,
    ResetPasswordIn,
    SessionOut,
    TwoFactorPendingOut,
    TwoFactorVerifyIn,
    UserOut,
)
from sessionauth.services.auth_gate import PresentedTokens
from sessionauth.services.devices import DeviceInfo
from sessionauth.services.email import EmailDispatcher
from sessionauth.services.email_verification import resend_verification, verify_email
from sessionauth.services.login import Authenticated, TwoFactorPending, complete_two_factor_login, login
from sessionauth.services.passwords import request_password_reset, reset_password
from sessionauth.services.users import register_user

router = APIRouter(prefix="/auth", tags=["auth"])

GENERIC_RESET_MESSAGE = "If an account exists for that email, a password reset link has been sent."
GENERIC_RESEND_MESSAGE = "If an account exists for that email, a verification link has been sent."


def login_out(result: Authenticated) -> LoginOut:
    session = result.session
    return LoginOut(
        user=UserOut.model_validate(result.user),
        session=SessionOut(
            id=session.id,
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            ip_address=session.ip_address,
            device_type=session.device_type,
            device_name=session.device_name,
            browser=session.browser,
            os=session.os,
        ),
    )


def pending_out(result: TwoFactorPending) -> TwoFactorPendingOut:
    return TwoFactorPendingOut(user_id=result.user_id, type=result.purpose)


# -----------------------------
# Registration / verification
# -----------------------------
@router.post("/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterIn,
    db: Session = Depends(get_db),
    emailer: EmailDispatcher = Depends(get_email_dispatcher),
):
    user = register_user(db, emailer, email=payload.email, password=payload.password, name=payload.name)
    return RegisterOut(
        message="Registration successful. Please check your email to verify your account.",
        user=UserOut.model_validate(user),
    )


@router.post("/verify-email/{user_id}/{token}", response_model=MessageOut)
def verify_email_route(user_id: str, token: str, db: Session = Depends(get_db)):
    verify_email(db, user_id, token)
    return MessageOut(message="Email verified successfully")


@router.post("/resend-verification", response_model=MessageOut)
@limiter.limit(lambda: settings.RESEND_RATE_LIMIT, exempt_when=rate_limiting_disabled)
def resend_verification_route(
    request: Request,
    payload: EmailIn,
    db: Session = Depends(get_db),
    emailer: EmailDispatcher = Depends(get_email_dispatcher),
):
    resend_verification(db, emailer, payload.email)
    return MessageOut(message=GENERIC_RESEND_MESSAGE)


# -----------------------------
# Login
# -----------------------------
@router.post("/login", response_model=Union[LoginOut, TwoFactorPendingOut])
@limiter.limit(lambda: settings.LOGIN_RATE_LIMIT, exempt_when=rate_limiting_disabled)
def login_route(
    request: Request,
    response: Response,
    payload: LoginIn,
    tokens: PresentedTokens = Depends(get_presented_tokens),
    device: DeviceInfo = Depends(get_client_device),
    db: Session = Depends(get_db),
    emailer: EmailDispatcher = Depends(get_email_dispatcher),
):
    result = login(
        db,
        emailer,
        email=payload.email,
        password=payload.password,
        device=device,
        presented_refresh_token=tokens.refresh_token,
    )
    if isinstance(result, TwoFactorPending):
        response.status_code = status.HTTP_202_ACCEPTED
        return pending_out(result)

    set_token_cookies(response, result.tokens)
    return login_out(result)


@router.post("/2fa/verify", response_model=LoginOut)
@limiter.limit(lambda: settings.TWO_FACTOR_RATE_LIMIT, exempt_when=rate_limiting_disabled)
def verify_two_factor_login(
    request: Request,
    response: Response,
    payload: TwoFactorVerifyIn,
    tokens: PresentedTokens = Depends(get_presented_tokens),
    device: DeviceInfo = Depends(get_client_device),
    db: Session = Depends(get_db),
):
    if payload.type != TwoFactorPurpose.LOGIN:
        raise ValidationError("Password change codes are submitted to /auth/change-password")

    result = complete_two_factor_login(
        db,
        user_id=payload.user_id,
        code=payload.code,
        device=device,
        presented_refresh_token=tokens.refresh_token,
    )
    set_token_cookies(response, result.tokens)
    return login_out(result)


# -----------------------------
# Password reset
# -----------------------------
@router.post("/request-password-reset", response_model=MessageOut)
@limiter.limit(lambda: settings.RESEND_RATE_LIMIT, exempt_when=rate_limiting_disabled)
def request_password_reset_route(
    request: Request,
    payload: EmailIn,
    db: Session = Depends(get_db),
    emailer: EmailDispatcher = Depends(get_email_dispatcher),
):
    request_password_reset(db, emailer, payload.email)
    return MessageOut(message=GENERIC_RESET_MESSAGE)


@router.post("/reset-password", response_model=MessageOut)
def reset_password_route(payload: ResetPasswordIn, db: Session = Depends(get_db)):
    reset_password(db, payload.token, payload.password)
    return MessageOut(message="Password has been reset. Please log in with your new password.")
