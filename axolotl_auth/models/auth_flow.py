"""Authorization flow models: pending requests and one-time codes."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from axolotl_auth.db.base import Base


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CodeStatus(StrEnum):
    """Lifecycle of a one-time authorization code."""

    ISSUED = "issued"
    USED = "used"
    EXPIRED = "expired"


class AuthorizationRequest(Base):
    """A pending authorization request keyed by the client-generated state."""

    __tablename__ = "auth_requests"

    state: Mapped[str] = mapped_column(String(255), primary_key=True)
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    code_challenge: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def is_expired(self, now: datetime) -> bool:
        return now > as_utc(self.expires_at)


class AuthorizationCode(Base):
    """One-time code handing an identity session over to the waiting client.

    Only the SHA-256 hex digest of the code is stored.
    """

    __tablename__ = "auth_codes"

    code_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def status(self, now: datetime) -> CodeStatus:
        if self.used_at is not None:
            return CodeStatus.USED
        if now > as_utc(self.expires_at):
            return CodeStatus.EXPIRED
        return CodeStatus.ISSUED
