# sessionauth/models/session.py
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, func
from sqlalchemy.orm import relationship

from sessionauth.core.base import Base


class UserSession(Base):
    """One authenticated device/client. Named to avoid clashing with sqlalchemy.orm.Session."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    # Parsed from the user agent; NULL when the parser can't tell.
    device_type = Column(String(32), nullable=True)
    device_name = Column(String(100), nullable=True)
    browser = Column(String(100), nullable=True)
    os = Column(String(100), nullable=True)

    # Absolute expiry; rotation does not extend it.
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_used_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="sessions")

    refresh_token = relationship(
        "RefreshToken",
        back_populates="session",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
