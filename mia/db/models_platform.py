"""SQLAlchemy models for third-party platform connections and connect state."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from mia.db.base import BaseEntity
from mia.platforms.types import Platform

PlatformColumn = Enum(
    Platform,
    name="platform",
    native_enum=False,
    length=20,
    values_callable=lambda members: [m.value for m in members],
)


class PlatformConnectionEntity(BaseEntity):
    """A user's encrypted OAuth tokens for one third-party platform."""

    __tablename__ = "platform_connections"
    __table_args__ = (UniqueConstraint("user_id", "platform"),)

    id: Mapped[str] = mapped_column(String(48), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(48), ForeignKey("users.id"), nullable=False, index=True
    )
    platform: Mapped[Platform] = mapped_column(PlatformColumn, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="Bearer"
    )
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    connected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class OAuthStateEntity(BaseEntity):
    """PKCE and CSRF correlation for a third-party connect in progress."""

    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(256), primary_key=True)
    platform: Mapped[Platform] = mapped_column(PlatformColumn, nullable=False)
    user_id: Mapped[str] = mapped_column(
        String(48), ForeignKey("users.id"), nullable=False
    )
    code_verifier: Mapped[str] = mapped_column(String(256), nullable=False)
    redirect_after: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
