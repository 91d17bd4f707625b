"""Cached browser identity for domains that needed a CAPTCHA solve."""

import json
from datetime import datetime

from sqlalchemy import String, Text, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class VerifiedSession(UUIDPrimaryKeyMixin, Base):
    """Cookies and user agent that passed a challenge for one domain.

    A later verification for the same domain replaces the row. Lookups only
    return rows whose ``expires_at`` is in the future; expired rows linger
    until the maintenance sweep deletes them.
    """

    __tablename__ = "verified_sessions"

    domain: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    cookies_json: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON list of cookie objects")
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("expires_at > created_at", name="ck_verified_sessions_expiry"),
    )

    @property
    def cookies(self) -> list[dict]:
        return json.loads(self.cookies_json)

    def __repr__(self) -> str:
        return f"<VerifiedSession(id={self.id}, domain='{self.domain}', expires_at={self.expires_at})>"
