# sessionauth/dependencies/auth.py
from __future__ import annotations

import json
import re
from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from sessionauth.core.config import settings
from sessionauth.core.database import get_db
from sessionauth.core.security import TokenPair
from sessionauth.models.user import User
from sessionauth.schemas.auth import TokenPairOut
from sessionauth.services.auth_gate import AuthContext, PresentedTokens, authenticate
from sessionauth.services.devices import DeviceInfo

_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")


def _jwt_or_none(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    return value if _JWT_SHAPE.match(value) else None


def _bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, credentials = header_value.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


async def _refresh_from_body(request: Request) -> Optional[str]:
    if request.method != "POST":
        return None
    if "application/json" not in (request.headers.get("content-type") or ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    value = body.get("refresh_token") or body.get("refreshToken")
    return value if isinstance(value, str) else None


def _first_jwt(*candidates: Optional[str]) -> Optional[str]:
    for candidate in candidates:
        token = _jwt_or_none(candidate)
        if token:
            return token
    return None


async def get_presented_tokens(request: Request) -> PresentedTokens:
    """
    Collect tokens from every channel clients use; first JWT-shaped value wins.

    Access:  cookie, Authorization: Bearer, X-Access-Token
    Refresh: cookie, X-Refresh-Token, Authorization-Refresh: Bearer, JSON body
    """
    headers = request.headers
    access = _first_jwt(
        request.cookies.get(settings.ACCESS_COOKIE_NAME),
        _bearer(headers.get("authorization")),
        headers.get("x-access-token"),
    )
    refresh = _first_jwt(
        request.cookies.get(settings.REFRESH_COOKIE_NAME),
        headers.get("x-refresh-token"),
        _bearer(headers.get("authorization-refresh")),
        await _refresh_from_body(request),
    )
    return PresentedTokens(access_token=access, refresh_token=refresh)


# -----------------------------
# Outbound transport
# -----------------------------
def set_token_cookies(response: Response, tokens: TokenPair) -> None:
    common = dict(
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path=settings.COOKIE_PATH,
        domain=settings.COOKIE_DOMAIN,
    )
    response.set_cookie(
        key=settings.ACCESS_COOKIE_NAME,
        value=tokens.access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        **common,
    )
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=tokens.refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600,
        **common,
    )


def clear_token_cookies(response: Response) -> None:
    for header in ("X-Access-Token", "X-Refresh-Token", "X-Token-Renewed"):
        if header in response.headers:
            del response.headers[header]
    for name in (settings.ACCESS_COOKIE_NAME, settings.REFRESH_COOKIE_NAME):
        response.delete_cookie(
            key=name,
            path=settings.COOKIE_PATH,
            domain=settings.COOKIE_DOMAIN,
            secure=settings.COOKIE_SECURE,
            httponly=True,
            samesite=settings.COOKIE_SAMESITE,
        )


def apply_renewed_tokens(response: Response, tokens: TokenPair) -> None:
    # Browsers pick up the cookies; native clients read the headers.
    set_token_cookies(response, tokens)
    response.headers["X-Access-Token"] = tokens.access_token
    response.headers["X-Refresh-Token"] = tokens.refresh_token
    response.headers["X-Token-Renewed"] = "true"


def token_pair_out(tokens: Optional[TokenPair]) -> Optional[TokenPairOut]:
    if tokens is None:
        return None
    return TokenPairOut(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.access_expires_in,
    )


# -----------------------------
# Dependencies
# -----------------------------
def get_client_device(request: Request) -> DeviceInfo:
    ip = request.client.host if request.client else None
    return DeviceInfo.from_client(ip, request.headers.get("user-agent"))


def get_auth_context(
    request: Request,
    response: Response,
    tokens: PresentedTokens = Depends(get_presented_tokens),
    db: Session = Depends(get_db),
) -> AuthContext:
    ctx = authenticate(db, tokens)
    if ctx.renewed_tokens is not None:
        apply_renewed_tokens(response, ctx.renewed_tokens)
        # The rotation is committed; error responses built later must carry it too.
        request.state.renewed_tokens = ctx.renewed_tokens
    request.state.user_id = ctx.user.id
    request.state.session_id = ctx.session.id
    return ctx


def get_current_user(ctx: AuthContext = Depends(get_auth_context)) -> User:
    return ctx.user
