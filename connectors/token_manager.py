"""
Token manager — exchange / refresh / revoke / unsubscribe per-owner sportsbook links.

This is the single interface the API layer and the background refresher use.
Link states (see ``connectors.credential.LinkState``)::

    Unlinked ──exchange──▶ Linked ──time──▶ AccessExpiring ──▶ AccessExpired
        ▲                    ▲                    │                 │
        │                    └──────refresh───────┴─────────────────┘
        └──revoke / unsubscribe──  NeedsReconnection (refresh token lapsed
                                   or ciphertext unreadable)

Interactive callers see the precise error.  Notification side-calls to the
sportsbook are best effort: their failures are logged and never change the
result of the operation that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

from connectors.credential import (
    CredentialRecord,
    decrypt_tokens,
    is_refresh_token_expired,
    needs_refresh,
    seal_tokens,
    utcnow,
)
from connectors.encryption import TokenCipher
from connectors.errors import (
    CipherError,
    InvalidRequest,
    NotLinked,
    ProviderError,
    ProviderRejected,
    ReconnectionRequired,
)
from connectors.gateway import SportsbookGateway
from connectors.providers import Sportsbook, normalize_owner, parse_sportsbook
from connectors.schemas import (
    ConnectionStatus,
    ExchangeResult,
    RefreshResult,
    RevokeResult,
    UnsubscribeResult,
)
from connectors.store import CredentialStore

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Orchestrates the credential state machine for every (owner, sportsbook)."""

    def __init__(
        self,
        *,
        store: CredentialStore,
        gateway: SportsbookGateway,
        cipher: TokenCipher,
        redirect_uri: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._cipher = cipher
        self._redirect_uri = redirect_uri
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[Tuple[str, Sportsbook], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ── Exchange ────────────────────────────────────────────────────────

    async def exchange(
        self,
        owner: str,
        code: Optional[str],
        code_verifier: Optional[str],
        sportsbook: Any,
    ) -> ExchangeResult:
        """
        Trade an authorization code (PKCE) for tokens and store the link.

        A second exchange for an already linked pair overwrites the active
        record in place.
        """
        if not code or not code_verifier or not sportsbook:
            raise InvalidRequest("Missing required fields: code, codeVerifier, sportsbook")
        sb = parse_sportsbook(sportsbook)
        owner = normalize_owner(owner)

        pair = await self._gateway.exchange_code(sb, code, code_verifier, self._redirect_uri)
        if not pair.refresh_token:
            raise ProviderRejected(
                502,
                provider_error_code="missing_refresh_token",
                description="Token response did not include a refresh token",
            )

        fields = seal_tokens(
            self._cipher,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            issued_at=self.clock(),
            sportsbook_user_id=pair.provider_user_id,
            scopes=tuple(pair.scopes or ()),
        )
        async with self._lock_for(owner, sb):
            record = await self._store.upsert_active(owner, sb, fields)

        logger.info(
            "Linked %s for %s (access token valid until %s)",
            sb.value, owner, record.access_token_expires_at.isoformat(),
        )

        if record.sportsbook_user_id:
            await self._notify(record, pair.access_token, subscribe=True)

        return ExchangeResult(sportsbook=sb)

    # ── Status ──────────────────────────────────────────────────────────

    async def status(self, owner: str, sportsbook: Any) -> ConnectionStatus:
        sb = parse_sportsbook(sportsbook)
        owner = normalize_owner(owner)

        record = await self._store.find_active(owner, sb)
        if record is None:
            return ConnectionStatus(
                owner_email=owner,
                sportsbook=sb,
                is_connected=False,
                needs_reconnection=False,
            )

        return ConnectionStatus(
            owner_email=record.owner_email,
            sportsbook=sb,
            is_connected=True,
            access_token_expires_at=record.access_token_expires_at,
            refresh_token_expires_at=record.refresh_token_expires_at,
            needs_reconnection=is_refresh_token_expired(record, self.clock()),
        )

    # ── Refresh ─────────────────────────────────────────────────────────

    async def refresh(self, owner: str, sportsbook: Any) -> RefreshResult:
        """
        Mint a new token pair with the stored refresh token.

        Raises
        ------
        NotLinked             – no active link
        ReconnectionRequired  – refresh token lapsed (no network call is made)
        CipherError           – stored tokens cannot be decrypted
        ProviderRejected / ProviderUnreachable – from the sportsbook; the
                                record is left untouched
        """
        sb = parse_sportsbook(sportsbook)
        owner = normalize_owner(owner)

        async with self._lock_for(owner, sb):
            record = await self._store.find_active(owner, sb)
            if record is None:
                raise NotLinked("No active token found")
            if is_refresh_token_expired(record, self.clock()):
                raise ReconnectionRequired("Refresh token has expired. Please reconnect.")

            refresh_token = self._cipher.decrypt(record.encrypted_refresh_token)
            pair = await self._gateway.refresh(sb, refresh_token)

            fields = seal_tokens(
                self._cipher,
                access_token=pair.access_token,
                # rotation is optional on the sportsbook side
                refresh_token=pair.refresh_token or refresh_token,
                expires_in=pair.expires_in,
                issued_at=self.clock(),
                sportsbook_user_id=pair.provider_user_id,
                scopes=tuple(pair.scopes) if pair.scopes is not None else None,
            )
            updated = await self._store.update_active(owner, sb, fields)
            if updated is None:
                raise NotLinked("Link was removed while refreshing")

        logger.info(
            "Refreshed %s token for %s (access token valid until %s)",
            sb.value, owner, updated.access_token_expires_at.isoformat(),
        )
        return RefreshResult(
            expires_at=updated.access_token_expires_at,
            refresh_token_expires_at=updated.refresh_token_expires_at,
        )

    # ── Revoke / unsubscribe ────────────────────────────────────────────

    async def revoke(self, owner: str, sportsbook: Any) -> RevokeResult:
        """Deactivate the link locally.  Idempotent, no sportsbook call."""
        sb = parse_sportsbook(sportsbook)
        owner = normalize_owner(owner)
        await self._store.deactivate(owner, sb)
        return RevokeResult()

    async def unsubscribe(self, owner: str, sportsbook: Any) -> UnsubscribeResult:
        """
        Drop the link and tell the sportsbook to stop sending notifications.

        The local deactivation is committed before the sportsbook is called,
        so an outage on their side never leaves the link half alive.
        """
        sb = parse_sportsbook(sportsbook)
        owner = normalize_owner(owner)

        async with self._lock_for(owner, sb):
            record = await self._store.find_active(owner, sb)
            if record is None:
                raise NotLinked("No active connection found for this sportsbook")
            try:
                return await self._unsubscribe_record(record)
            except Exception:
                logger.exception("Unsubscribe from %s failed for %s", sb.value, owner)
                try:
                    await self._store.deactivate(owner, sb)
                except Exception:
                    logger.exception("Could not deactivate %s link for %s", sb.value, owner)
                raise

    async def _unsubscribe_record(self, record: CredentialRecord) -> UnsubscribeResult:
        owner, sb = record.owner_email, record.sportsbook

        try:
            access_token, refresh_token = decrypt_tokens(record, self._cipher)
        except CipherError:
            logger.warning(
                "Stored %s tokens for %s are unreadable; dropping the link without notifying",
                sb.value, owner,
            )
            await self._store.deactivate(owner, sb)
            return UnsubscribeResult(
                message="Successfully unsubscribed from sportsbook (token was invalid)",
                sportsbook=sb,
                credential_was_invalid=True,
            )

        now = self.clock()
        if needs_refresh(record, now) and not is_refresh_token_expired(record, now):
            try:
                pair = await self._gateway.refresh(sb, refresh_token)
                access_token = pair.access_token
            except ProviderError as exc:
                logger.warning(
                    "Refresh before unsubscribe failed for %s/%s (%s); using the stored access token",
                    sb.value, owner, exc.error_code,
                )

        await self._store.deactivate(owner, sb)

        if record.sportsbook_user_id:
            await self._notify(record, access_token, subscribe=False)

        return UnsubscribeResult(sportsbook=sb)

    # ── Internals ───────────────────────────────────────────────────────

    def _lock_for(self, owner: str, sportsbook: Sportsbook) -> asyncio.Lock:
        key = (owner, sportsbook)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _notify(self, record: CredentialRecord, access_token: str, *, subscribe: bool) -> None:
        try:
            await self._gateway.notify_subscription_change(
                record.sportsbook,
                record.sportsbook_user_id,
                access_token,
                record.owner_email,
                subscribe,
            )
        except Exception:
            logger.exception(
                "%s notification to %s failed for %s",
                "subscribe" if subscribe else "unsubscribe",
                record.sportsbook.value,
                record.owner_email,
            )
