from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from sessionauth.core.database import get_db
from sessionauth.dependencies.auth import get_auth_context, token_pair_out
from sessionauth.dependencies.email import get_email_dispatcher
from sessionauth.schemas.auth import ChangePasswordIn, MeOut, MessageOut, TwoFactorPendingOut, UserOut
from sessionauth.services.auth_gate import AuthContext
from sessionauth.services.email import EmailDispatcher
from sessionauth.services.passwords import change_password

router = APIRouter(prefix="/auth", tags=["users"])


@router.get("/me", response_model=MeOut)
def get_me(ctx: AuthContext = Depends(get_auth_context)) -> MeOut:
    return MeOut(user=UserOut.model_validate(ctx.user), tokens=token_pair_out(ctx.renewed_tokens))


@router.post(
    "/change-password",
    response_model=Union[MessageOut, TwoFactorPendingOut],
)
def change_password_route(
    payload: ChangePasswordIn,
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    emailer: EmailDispatcher = Depends(get_email_dispatcher),
):
    pending = change_password(
        db,
        emailer,
        ctx.user,
        current_password=payload.current_password,
        new_password=payload.new_password,
        two_factor_code=payload.two_factor_code,
        keep_session_id=ctx.session.id,
    )
    if pending is not None:
        response.status_code = status.HTTP_202_ACCEPTED
        return TwoFactorPendingOut(
            user_id=pending.user_id,
            type=pending.purpose,
            message="A verification code has been sent to your email. Resubmit with twoFactorCode.",
        )

    return MessageOut(
        message="Password updated. Other sessions have been signed out.",
        tokens=token_pair_out(ctx.renewed_tokens),
    )
