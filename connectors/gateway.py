"""
SportsbookGateway — the wire contract with the two sportsbook auth servers.

Both sportsbooks speak the same protocol; only the base URL differs:

* ``POST {base}/oauth/token``                       authorization_code / refresh_token grants
* ``POST {base}/api/users/{user_id}/subscribe``     best-effort notification
* ``POST {base}/api/users/{user_id}/unsubscribe``   best-effort notification

The gateway never retries.  Non-2xx answers from the token endpoint become
``ProviderRejected``; transport failures (timeouts included) become
``ProviderUnreachable``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import httpx

from config.settings import Settings
from connectors.errors import ProviderRejected, ProviderUnreachable
from connectors.providers import Sportsbook
from connectors.schemas import TokenPair

logger = logging.getLogger(__name__)

_TOKEN_PATH = "/oauth/token"


class SportsbookGateway:
    """Stateless adapter over the sportsbook OAuth and subscription endpoints."""

    def __init__(
        self,
        *,
        base_urls: Mapping[Sportsbook, str],
        client_id: str,
        client_secret: str,
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        missing = [sb.value for sb in Sportsbook if sb not in base_urls]
        if missing:
            raise ValueError(f"No base URL configured for: {', '.join(missing)}")
        self._base_urls = {sb: url.rstrip("/") for sb, url in base_urls.items()}
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SportsbookGateway":
        return cls(
            base_urls={
                Sportsbook.BETWIZ: settings.betwiz_api_url,
                Sportsbook.WINNINGEDGE: settings.winningedge_api_url,
            },
            client_id=settings.bet360_client_id,
            client_secret=settings.bet360_client_secret,
            timeout=settings.provider_timeout_seconds,
        )

    def base_url_for(self, sportsbook: Sportsbook) -> str:
        return self._base_urls[sportsbook]

    # ── Token endpoint ──────────────────────────────────────────────────

    async def exchange_code(
        self,
        sportsbook: Sportsbook,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenPair:
        """Exchange an authorization code (PKCE) for a token pair."""
        return await self._post_token(
            sportsbook,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code_verifier": code_verifier,
            },
        )

    async def refresh(self, sportsbook: Sportsbook, refresh_token: str) -> TokenPair:
        """Use a refresh token to mint a new access token."""
        return await self._post_token(
            sportsbook,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )

    # ── Subscription side-calls ─────────────────────────────────────────

    async def notify_subscription_change(
        self,
        sportsbook: Sportsbook,
        provider_user_id: str,
        access_token: str,
        owner_email: str,
        subscribe: bool,
    ) -> bool:
        """
        Tell the sportsbook to (un)subscribe the owner.

        Best effort: never raises for HTTP or transport problems, returns
        whether the sportsbook acknowledged the call.
        """
        action = "subscribe" if subscribe else "unsubscribe"
        url = f"{self.base_url_for(sportsbook)}/api/users/{provider_user_id}/{action}"
        try:
            async with self._client() as client:
                resp = await client.post(
                    url,
                    json={"bet360Email": owner_email},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "%s notification to %s failed for %s: %s",
                action, sportsbook.value, owner_email, exc.__class__.__name__,
            )
            return False

        if resp.is_success:
            logger.info("%s notification accepted by %s for %s", action, sportsbook.value, owner_email)
            return True

        logger.warning(
            "%s notification rejected by %s for %s: HTTP %d",
            action, sportsbook.value, owner_email, resp.status_code,
        )
        return False

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    # ── Internals ───────────────────────────────────────────────────────

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _post_token(self, sportsbook: Sportsbook, form: Dict[str, str]) -> TokenPair:
        url = f"{self.base_url_for(sportsbook)}{_TOKEN_PATH}"
        grant = form["grant_type"]
        try:
            async with self._client() as client:
                resp = await client.post(url, data=form, timeout=self._timeout)
        except httpx.TransportError as exc:
            logger.warning("%s grant against %s failed: %s", grant, sportsbook.value, exc.__class__.__name__)
            raise ProviderUnreachable(f"{sportsbook.display_name} is unreachable") from exc

        if not resp.is_success:
            body = _json_or_empty(resp)
            logger.warning(
                "%s grant rejected by %s: HTTP %d (%s)",
                grant, sportsbook.value, resp.status_code, body.get("error"),
            )
            raise ProviderRejected(
                resp.status_code,
                provider_error_code=body.get("error"),
                description=body.get("error_description"),
            )

        body = _json_or_empty(resp)
        try:
            return TokenPair.from_response(body)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("%s grant against %s returned an unusable body", grant, sportsbook.value)
            raise ProviderRejected(
                resp.status_code,
                provider_error_code="invalid_token_response",
                description="Token response is missing required fields",
            ) from exc


def _json_or_empty(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
