"""
CredentialRecord — the stored owner↔sportsbook link as a plain value.

Expiry predicates and the link state are free functions over the record so
the store, the cipher and the lifecycle logic stay independent of each
other.  None of the lifecycle states between Linked and NeedsReconnection
are persisted; they are derived from the two expiry timestamps.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple

from connectors.encryption import TokenCipher
from connectors.providers import Sportsbook

REFRESH_WINDOW = timedelta(minutes=5)
REFRESH_TOKEN_LIFETIME = timedelta(days=90)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LinkState(str, Enum):
    UNLINKED = "unlinked"
    LINKED = "linked"
    ACCESS_EXPIRING = "access_expiring"
    ACCESS_EXPIRED = "access_expired"
    NEEDS_RECONNECTION = "needs_reconnection"


@dataclass(frozen=True)
class CredentialRecord:
    id: uuid.UUID
    owner_email: str
    sportsbook: Sportsbook
    encrypted_access_token: str = field(repr=False)
    encrypted_refresh_token: str = field(repr=False)
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    sportsbook_user_id: Optional[str] = None
    scopes: Tuple[str, ...] = ()
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class CredentialFields:
    """Mutable fields written by an exchange or a refresh.

    ``None`` for ``sportsbook_user_id`` or ``scopes`` keeps the stored value.
    """

    encrypted_access_token: str = field(repr=False)
    encrypted_refresh_token: str = field(repr=False)
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    sportsbook_user_id: Optional[str] = None
    scopes: Optional[Tuple[str, ...]] = None


# ── Expiry predicates ───────────────────────────────────────────────────


def is_access_token_expired(record: CredentialRecord, now: datetime) -> bool:
    return now >= record.access_token_expires_at


def is_refresh_token_expired(record: CredentialRecord, now: datetime) -> bool:
    return now >= record.refresh_token_expires_at


def needs_refresh(record: CredentialRecord, now: datetime) -> bool:
    """True once the access token is inside the refresh window (or gone)."""
    return now + REFRESH_WINDOW >= record.access_token_expires_at


def link_state(record: Optional[CredentialRecord], now: datetime) -> LinkState:
    if record is None or not record.is_active:
        return LinkState.UNLINKED
    if is_refresh_token_expired(record, now):
        return LinkState.NEEDS_RECONNECTION
    if is_access_token_expired(record, now):
        return LinkState.ACCESS_EXPIRED
    if needs_refresh(record, now):
        return LinkState.ACCESS_EXPIRING
    return LinkState.LINKED


# ── Token helpers ───────────────────────────────────────────────────────


def seal_tokens(
    cipher: TokenCipher,
    *,
    access_token: str,
    refresh_token: str,
    expires_in: int,
    issued_at: datetime,
    sportsbook_user_id: Optional[str] = None,
    scopes: Optional[Tuple[str, ...]] = None,
) -> CredentialFields:
    """Encrypt a fresh token pair and compute both expiries from ``issued_at``."""
    return CredentialFields(
        encrypted_access_token=cipher.encrypt(access_token),
        encrypted_refresh_token=cipher.encrypt(refresh_token),
        access_token_expires_at=issued_at + timedelta(seconds=expires_in),
        refresh_token_expires_at=issued_at + REFRESH_TOKEN_LIFETIME,
        sportsbook_user_id=sportsbook_user_id,
        scopes=scopes,
    )


def decrypt_tokens(record: CredentialRecord, cipher: TokenCipher) -> Tuple[str, str]:
    """Return ``(access_token, refresh_token)`` in plaintext."""
    return (
        cipher.decrypt(record.encrypted_access_token),
        cipher.decrypt(record.encrypted_refresh_token),
    )
