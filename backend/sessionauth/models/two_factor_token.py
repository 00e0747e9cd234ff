from __future__ import annotations

import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import relationship

from sessionauth.core.base import Base


class TwoFactorPurpose(str, enum.Enum):
    LOGIN = "LOGIN"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"


class TwoFactorToken(Base):
    __tablename__ = "two_factor_tokens"
    __table_args__ = (
        # At most one unused code per (user, purpose). Backs the delete-then-insert
        # in issue_code against concurrent issuance.
        Index(
            "uq_two_factor_tokens_unused_per_purpose",
            "user_id",
            "purpose",
            unique=True,
            postgresql_where=text("used_at IS NULL"),
            sqlite_where=text("used_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    purpose = Column(
        Enum(TwoFactorPurpose, name="two_factor_purpose", native_enum=False, length=32),
        nullable=False,
    )
    code_hash = Column(String(128), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    user = relationship("User", back_populates="two_factor_tokens")

    @property
    def is_used(self) -> bool:
        return self.used_at is not None
