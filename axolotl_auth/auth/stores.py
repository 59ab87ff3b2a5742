"""Persistence for pending authorization requests and one-time codes."""

import hashlib
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from axolotl_auth.models import AuthorizationCode, AuthorizationRequest

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the flow stores cannot be read or written."""


# Both dialects support INSERT ... ON CONFLICT DO UPDATE
_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def hash_code(code: str) -> str:
    """Hash an authorization code for storage."""
    return hashlib.sha256(code.encode()).hexdigest()


class AuthRequestStore:
    """Pending authorization requests, keyed by state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(
        self,
        state: str,
        redirect_uri: str,
        code_challenge: str,
        now: datetime,
        ttl_seconds: int,
    ) -> AuthorizationRequest:
        """Save a request; a retried authorize with the same state overwrites it.

        One ``INSERT ... ON CONFLICT (state) DO UPDATE``, so two retries racing
        on the same state both succeed and the later one wins.
        """
        values = {
            "state": state,
            "redirect_uri": redirect_uri,
            "code_challenge": code_challenge,
            "created_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
        insert = _INSERT_BY_DIALECT[self.db.get_bind().dialect.name]
        stmt = insert(AuthorizationRequest).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AuthorizationRequest.state],
            set_={key: stmt.excluded[key] for key in values if key != "state"},
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("Failed to store auth request") from e
        return await self.get(state)

    async def get(self, state: str) -> AuthorizationRequest | None:
        try:
            result = await self.db.execute(
                select(AuthorizationRequest)
                .where(AuthorizationRequest.state == state)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise StorageError("Failed to load auth request") from e
        return result.scalar_one_or_none()


class AuthCodeStore:
    """One-time authorization codes, keyed by the hash of the raw code."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        code: str,
        user_id: str,
        state: str,
        access_token: str,
        refresh_token: str | None,
        now: datetime,
        ttl_seconds: int,
    ) -> AuthorizationCode:
        record = AuthorizationCode(
            code_hash=hash_code(code),
            user_id=user_id,
            state=state,
            access_token=access_token,
            refresh_token=refresh_token,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("Failed to store auth code") from e
        return record

    async def get(self, code: str) -> AuthorizationCode | None:
        try:
            result = await self.db.execute(
                select(AuthorizationCode).where(AuthorizationCode.code_hash == hash_code(code))
            )
        except SQLAlchemyError as e:
            raise StorageError("Failed to load auth code") from e
        return result.scalar_one_or_none()

    async def consume(self, code: str, now: datetime) -> bool:
        """Mark a code used. Only the first caller for a given code gets True.

        A single conditional UPDATE, so racing exchanges cannot both win
        even though each of them read the code as unused.
        """
        try:
            result = await self.db.execute(
                update(AuthorizationCode)
                .where(
                    AuthorizationCode.code_hash == hash_code(code),
                    AuthorizationCode.used_at.is_(None),
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("Failed to consume auth code") from e
        return result.rowcount == 1


async def purge_expired(db: AsyncSession, before: datetime) -> int:
    """Delete requests and codes that expired before ``before``. Returns rows removed."""
    codes = await db.execute(
        delete(AuthorizationCode).where(AuthorizationCode.expires_at < before)
    )
    requests = await db.execute(
        delete(AuthorizationRequest).where(AuthorizationRequest.expires_at < before)
    )
    await db.commit()
    removed = (codes.rowcount or 0) + (requests.rowcount or 0)
    if removed:
        logger.info("Purged %d expired authorization records", removed)
    return removed
