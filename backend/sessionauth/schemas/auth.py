# sessionauth/schemas/auth.py
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field, SerializerFunctionWrapHandler, model_serializer, model_validator

from sessionauth.models.two_factor_token import TwoFactorPurpose
from sessionauth.schemas.common import CamelModel


# -----------------------------
# Requests
# -----------------------------
class RegisterIn(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    confirm_password: str = Field(min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterIn":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginIn(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    refresh_token: Optional[str] = None


class EmailIn(CamelModel):
    email: EmailStr


class TwoFactorVerifyIn(CamelModel):
    user_id: str = Field(min_length=1, max_length=36)
    code: str = Field(min_length=4, max_length=10, pattern=r"^\d+$")
    type: TwoFactorPurpose = TwoFactorPurpose.LOGIN
    refresh_token: Optional[str] = None


class TwoFactorCodeIn(CamelModel):
    code: str = Field(min_length=4, max_length=10, pattern=r"^\d+$")


class ResetPasswordIn(CamelModel):
    token: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=1, max_length=128)


class ChangePasswordIn(CamelModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)
    two_factor_code: Optional[str] = Field(default=None, max_length=10, pattern=r"^\d+$")


# -----------------------------
# Responses
# -----------------------------
class TokenPairOut(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class UserOut(CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    is_verified: bool
    is_two_factor_enabled: bool


class SessionOut(CamelModel):
    id: str
    access_token: str
    refresh_token: str
    ip_address: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None


class RenewableOut(CamelModel):
    """Responses of authenticated routes; `tokens` appears only when the gate rotated the pair."""

    tokens: Optional[TokenPairOut] = None

    @model_serializer(mode="wrap")
    def _omit_unrenewed_tokens(self, handler: SerializerFunctionWrapHandler):
        data = handler(self)
        if self.tokens is None:
            data.pop("tokens", None)
        return data


class MessageOut(RenewableOut):
    status: Literal["success"] = "success"
    message: str


class RegisterOut(CamelModel):
    status: Literal["success"] = "success"
    message: str
    user: UserOut


class LoginOut(CamelModel):
    status: Literal["success"] = "success"
    user: UserOut
    session: SessionOut


class TwoFactorPendingOut(CamelModel):
    status: Literal["pending"] = "pending"
    two_factor_required: bool = True
    user_id: str
    type: TwoFactorPurpose
    message: str = "A verification code has been sent to your email"


class MeOut(RenewableOut):
    status: Literal["success"] = "success"
    user: UserOut


class SessionInfoOut(CamelModel):
    id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    last_used: datetime
    created_at: datetime
    current: bool = False


class SessionListOut(RenewableOut):
    status: Literal["success"] = "success"
    sessions: List[SessionInfoOut]
