# Import every model so relationship() string targets resolve and
# Base.metadata is complete for create_all / alembic autogenerate.
from sessionauth.models.user import User
from sessionauth.models.email_verification import EmailVerification
from sessionauth.models.password_reset import PasswordReset
from sessionauth.models.two_factor_token import TwoFactorPurpose, TwoFactorToken
from sessionauth.models.session import UserSession
from sessionauth.models.refresh_token import RefreshToken

__all__ = [
    "User",
    "EmailVerification",
    "PasswordReset",
    "TwoFactorPurpose",
    "TwoFactorToken",
    "UserSession",
    "RefreshToken",
]
