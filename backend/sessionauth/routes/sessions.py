# sessionauth/routes/sessions.py
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from sessionauth.core.database import get_db
from sessionauth.dependencies.auth import clear_token_cookies, get_auth_context, token_pair_out
from sessionauth.schemas.auth import MessageOut, SessionInfoOut, SessionListOut
from sessionauth.services.auth_gate import AuthContext
from sessionauth.services.sessions import list_sessions, logout, logout_all, logout_session

router = APIRouter(prefix="/auth", tags=["sessions"])


@router.get("/sessions", response_model=SessionListOut)
def get_sessions(ctx: AuthContext = Depends(get_auth_context), db: Session = Depends(get_db)):
    # Token values are never part of the listing.
    sessions = [
        SessionInfoOut(
            id=s.id,
            ip_address=s.ip_address,
            user_agent=s.user_agent,
            device_type=s.device_type,
            device_name=s.device_name,
            browser=s.browser,
            os=s.os,
            last_used=s.last_used_at,
            created_at=s.created_at,
            current=s.id == ctx.session.id,
        )
        for s in list_sessions(db, ctx.user.id)
    ]
    return SessionListOut(sessions=sessions, tokens=token_pair_out(ctx.renewed_tokens))


@router.post("/logout", response_model=MessageOut)
def logout_current(
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    logout(db, ctx.session)
    clear_token_cookies(response)
    return MessageOut(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageOut)
def logout_everywhere(
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    count = logout_all(db, ctx.user.id)
    clear_token_cookies(response)
    return MessageOut(message=f"Logged out of {count} session(s)")


@router.post("/logout/{session_id}", response_model=MessageOut)
def logout_specific_session(
    session_id: str,
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    is_current = session_id == ctx.session.id
    logout_session(db, ctx.user.id, session_id)
    if is_current:
        clear_token_cookies(response)
        return MessageOut(message="Session terminated")
    return MessageOut(message="Session terminated", tokens=token_pair_out(ctx.renewed_tokens))
