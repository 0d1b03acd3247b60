"""
Pydantic schemas for the sportsbook token endpoint and the service-facing API.

None of the result models carry token values.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from connectors.providers import Sportsbook


class TokenPair(BaseModel):
    """Successful answer of ``POST {baseUrl}/oauth/token``."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    scopes: Optional[List[str]] = None
    provider_user_id: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenPair(expires_in={self.expires_in}, provider_user_id={self.provider_user_id!r})"

    __str__ = __repr__

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "TokenPair":
        scope = data.get("scope")
        user_id = data.get("user_id")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(data["expires_in"]),
            scopes=scope.split() if isinstance(scope, str) else None,
            provider_user_id=str(user_id) if user_id is not None else None,
        )


# ── Requests ────────────────────────────────────────────────────────────


class ExchangeRequest(BaseModel):
    """Body of ``POST /api/oauth/exchange``; validated by the lifecycle manager."""

    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = None
    code_verifier: Optional[str] = Field(default=None, alias="codeVerifier")
    state: Optional[str] = None
    sportsbook: Optional[str] = None


# ── Results ─────────────────────────────────────────────────────────────


class ExchangeResult(BaseModel):
    success: bool = True
    message: str = "Successfully connected to sportsbook"
    sportsbook: Sportsbook


class ConnectionStatus(BaseModel):
    owner_email: str
    sportsbook: Sportsbook
    is_connected: bool
    access_token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    needs_reconnection: bool = False


class RefreshResult(BaseModel):
    message: str = "Token refreshed successfully"
    expires_at: datetime
    refresh_token_expires_at: datetime


class RevokeResult(BaseModel):
    message: str = "Token revoked successfully"


class UnsubscribeResult(BaseModel):
    message: str = "Successfully unsubscribed from sportsbook"
    sportsbook: Sportsbook
    credential_was_invalid: bool = False
