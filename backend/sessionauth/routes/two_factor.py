from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sessionauth.core.database import get_db
from sessionauth.dependencies.auth import get_auth_context, token_pair_out
from sessionauth.dependencies.email import get_email_dispatcher
from sessionauth.schemas.auth import MessageOut, TwoFactorCodeIn
from sessionauth.services.auth_gate import AuthContext
from sessionauth.services.email import EmailDispatcher
from sessionauth.services.two_factor import confirm_two_factor, disable_two_factor, enable_two_factor

router = APIRouter(prefix="/auth/2fa", tags=["two-factor"])


@router.post("/enable", response_model=MessageOut)
def enable(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    emailer: EmailDispatcher = Depends(get_email_dispatcher),
):
    enable_two_factor(db, emailer, ctx.user)
    return MessageOut(
        message="A verification code has been sent to your email. Confirm it to enable two-factor authentication.",
        tokens=token_pair_out(ctx.renewed_tokens),
    )


@router.post("/confirm", response_model=MessageOut)
def confirm(
    payload: TwoFactorCodeIn,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    confirm_two_factor(db, ctx.user, payload.code)
    return MessageOut(
        message="Two-factor authentication enabled",
        tokens=token_pair_out(ctx.renewed_tokens),
    )


@router.post("/disable", response_model=MessageOut)
def disable(
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    disable_two_factor(db, ctx.user)
    return MessageOut(
        message="Two-factor authentication disabled",
        tokens=token_pair_out(ctx.renewed_tokens),
    )
