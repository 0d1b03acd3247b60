"""
CredentialStore — persistence of owner↔sportsbook links.

Every write is a single conditional statement matched on
(owner, sportsbook, is_active) so an interactive refresh and a scheduled
refresh of the same link cannot leave a mix of old and new fields.  Each
operation runs in its own short transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.credential import (
    REFRESH_WINDOW,
    CredentialFields,
    CredentialRecord,
    as_utc,
    utcnow,
)
from connectors.models import OAuthCredential
from connectors.providers import Sportsbook
from database.session import async_session_factory, ping_database

logger = logging.getLogger(__name__)

_SWEEP_BATCH_SIZE = 100


def _to_record(row: OAuthCredential) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        owner_email=row.owner_email,
        sportsbook=Sportsbook(row.sportsbook),
        sportsbook_user_id=row.sportsbook_user_id,
        encrypted_access_token=row.access_token,
        encrypted_refresh_token=row.refresh_token,
        access_token_expires_at=as_utc(row.access_token_expires_at),
        refresh_token_expires_at=as_utc(row.refresh_token_expires_at),
        scopes=tuple(row.scopes or ()),
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at) if row.created_at else None,
        updated_at=as_utc(row.updated_at) if row.updated_at else None,
    )


def _field_values(fields: CredentialFields) -> Dict[str, Any]:
    values: Dict[str, Any] = {
        "access_token": fields.encrypted_access_token,
        "refresh_token": fields.encrypted_refresh_token,
        "access_token_expires_at": fields.access_token_expires_at,
        "refresh_token_expires_at": fields.refresh_token_expires_at,
    }
    if fields.sportsbook_user_id is not None:
        values["sportsbook_user_id"] = fields.sportsbook_user_id
    if fields.scopes is not None:
        values["scopes"] = list(fields.scopes)
    return values


def _active_link(owner_email: str, sportsbook: Sportsbook):
    return (
        OAuthCredential.owner_email == owner_email,
        OAuthCredential.sportsbook == sportsbook.value,
        OAuthCredential.is_active.is_(True),
    )


class CredentialStore:
    """Async SQLAlchemy access to the ``oauth_credentials`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ) -> None:
        self._session_factory = session_factory

    async def ping(self) -> bool:
        return await ping_database(self._session_factory)

    async def find_active(
        self, owner_email: str, sportsbook: Sportsbook
    ) -> Optional[CredentialRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OAuthCredential).where(*_active_link(owner_email, sportsbook))
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row else None

    async def update_active(
        self,
        owner_email: str,
        sportsbook: Sportsbook,
        fields: CredentialFields,
    ) -> Optional[CredentialRecord]:
        """
        Overwrite the active link in place.

        Returns None (and writes nothing) when there is no active link, e.g.
        because it was revoked while a refresh was in flight.
        """
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._update_active(session, owner_email, sportsbook, fields)
                return _to_record(row) if row else None

    async def upsert_active(
        self,
        owner_email: str,
        sportsbook: Sportsbook,
        fields: CredentialFields,
    ) -> CredentialRecord:
        """Update the active link in place, or insert one if none exists."""
        try:
            return await self._upsert_once(owner_email, sportsbook, fields)
        except IntegrityError:
            # Lost an insert race against another exchange; the winner's row
            # is now the active one, so a second pass updates it in place.
            logger.info("Concurrent %s link for %s, retrying as update", sportsbook.value, owner_email)
            return await self._upsert_once(owner_email, sportsbook, fields)

    async def deactivate(self, owner_email: str, sportsbook: Sportsbook) -> bool:
        """
        Mark the active link inactive.  Idempotent: returns False when there
        was nothing to deactivate.
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(OAuthCredential)
                    .where(*_active_link(owner_email, sportsbook))
                    .values(is_active=False, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                deactivated = result.rowcount > 0
        if deactivated:
            logger.info("Deactivated %s link for %s", sportsbook.value, owner_email)
        return deactivated

    async def sweep_refreshable(
        self,
        now: datetime,
        *,
        batch_size: int = _SWEEP_BATCH_SIZE,
    ) -> AsyncIterator[CredentialRecord]:
        """
        Yield active links whose access token expires within the refresh
        window while the refresh token is still valid.

        Rows are read in short keyset-paginated batches, so no transaction is
        held open while the caller refreshes.  Rows that do not map to a known
        sportsbook are logged and skipped.  One-shot: iterate it once.
        """
        window_end = now + REFRESH_WINDOW
        last_id: Optional[uuid.UUID] = None
        while True:
            stmt = (
                select(OAuthCredential)
                .where(
                    OAuthCredential.is_active.is_(True),
                    OAuthCredential.access_token_expires_at <= window_end,
                    OAuthCredential.refresh_token_expires_at > now,
                )
                .order_by(OAuthCredential.id)
                .limit(batch_size)
            )
            if last_id is not None:
                stmt = stmt.where(OAuthCredential.id > last_id)

            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
                batch = []
                for row in rows:
                    try:
                        batch.append(_to_record(row))
                    except ValueError:
                        logger.error(
                            "Skipping credential %s for %s: unknown sportsbook %r",
                            row.id, row.owner_email, row.sportsbook,
                        )

            for record in batch:
                yield record
            if len(rows) < batch_size:
                return
            last_id = rows[-1].id

    async def _upsert_once(
        self,
        owner_email: str,
        sportsbook: Sportsbook,
        fields: CredentialFields,
    ) -> CredentialRecord:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._update_active(session, owner_email, sportsbook, fields)
                if row is None:
                    now = utcnow()
                    values = {"scopes": [], **_field_values(fields)}
                    row = OAuthCredential(
                        id=uuid.uuid4(),
                        owner_email=owner_email,
                        sportsbook=sportsbook.value,
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                        **values,
                    )
                    session.add(row)
                    await session.flush()
                    logger.info("Created %s link for %s", sportsbook.value, owner_email)
                return _to_record(row)

    async def _update_active(
        self,
        session: AsyncSession,
        owner_email: str,
        sportsbook: Sportsbook,
        fields: CredentialFields,
    ) -> Optional[OAuthCredential]:
        result = await session.execute(
            update(OAuthCredential)
            .where(*_active_link(owner_email, sportsbook))
            .values(updated_at=utcnow(), **_field_values(fields))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        refreshed = await session.execute(
            select(OAuthCredential).where(*_active_link(owner_email, sportsbook))
        )
        return refreshed.scalar_one()
