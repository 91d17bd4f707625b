"""Verified session cache, keyed by domain."""

import json
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.core.exceptions import InternalError, ValidationError
from stockwatch.models.base import utcnow
from stockwatch.models.verified_session import VerifiedSession

logger = structlog.get_logger(__name__)


class VerifiedSessionService:
    """Stores the cookies and user agent captured after a manual CAPTCHA solve."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="verified_session_service")

    async def find(self, domain: str) -> Optional[VerifiedSession]:
        """Return the unexpired session for a domain, if any."""
        result = await self.db.execute(
            select(VerifiedSession)
            .where(
                VerifiedSession.domain == domain.lower(),
                VerifiedSession.expires_at > utcnow(),
            )
            .order_by(VerifiedSession.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        domain: str,
        cookies: list[dict],
        user_agent: str,
        ttl_days: int,
    ) -> VerifiedSession:
        """Replace whatever session the domain had with a new one.

        Last writer wins when a scheduled check and a manual check race.
        """
        if ttl_days < 1:
            raise ValidationError("Session cache TTL must be at least one day")

        key = domain.lower()
        await self.db.execute(delete(VerifiedSession).where(VerifiedSession.domain == key))

        now = utcnow()
        session = VerifiedSession(
            domain=key,
            cookies_json=json.dumps(cookies),
            user_agent=user_agent,
            created_at=now,
            expires_at=now + timedelta(days=ttl_days),
        )
        self.db.add(session)
        await self.db.flush()

        stored = await self.find(key)
        if stored is None:
            raise InternalError(f"Verified session for '{key}' not readable after write")

        self.logger.info(
            "verified_session_stored",
            domain=key,
            cookies=len(cookies),
            expires_at=stored.expires_at.isoformat(),
        )
        return stored

    async def delete_by_domain(self, domain: str) -> int:
        result = await self.db.execute(
            delete(VerifiedSession).where(VerifiedSession.domain == domain.lower())
        )
        await self.db.flush()
        return result.rowcount

    async def delete_expired(self) -> int:
        """Sweep sessions whose expiry has passed.

        Returns:
            Number of rows deleted
        """
        result = await self.db.execute(
            delete(VerifiedSession).where(VerifiedSession.expires_at <= utcnow())
        )
        await self.db.flush()
        if result.rowcount:
            self.logger.info("expired_sessions_deleted", count=result.rowcount)
        return result.rowcount
