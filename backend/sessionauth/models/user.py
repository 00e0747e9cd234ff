# sessionauth/models/user.py
import uuid

from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.orm import relationship

from sessionauth.core.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Always stored case-folded; lookups normalize before querying.
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=False)

    is_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    is_two_factor_enabled = Column(Boolean, nullable=False, default=False, server_default="false")

    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    sessions = relationship(
        "UserSession",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    email_verification = relationship(
        "EmailVerification",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    password_reset = relationship(
        "PasswordReset",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    two_factor_tokens = relationship(
        "TwoFactorToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
