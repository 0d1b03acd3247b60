"""
OAuth API routes — exchange, status, refresh, revoke, unsubscribe.

Route prefix: /api/oauth

Errors raised by the lifecycle manager are rendered by the handler in
``api.middleware``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from auth.dependencies import get_current_owner
from connectors.schemas import (
    ConnectionStatus,
    ExchangeRequest,
    ExchangeResult,
    RefreshResult,
    RevokeResult,
    UnsubscribeResult,
)
from connectors.service import get_lifecycle_manager
from connectors.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])


@router.post("/exchange")
async def exchange_token(
    body: ExchangeRequest,
    owner: str = Depends(get_current_owner),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
) -> ExchangeResult:
    """Exchange the authorization code returned to the UI for stored tokens."""
    return await manager.exchange(owner, body.code, body.code_verifier, body.sportsbook)


@router.get("/status/{sportsbook}")
async def get_token_status(
    sportsbook: str,
    owner: str = Depends(get_current_owner),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
) -> ConnectionStatus:
    return await manager.status(owner, sportsbook)


@router.post("/refresh/{sportsbook}")
async def refresh_token(
    sportsbook: str,
    owner: str = Depends(get_current_owner),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
) -> RefreshResult:
    return await manager.refresh(owner, sportsbook)


@router.post("/revoke/{sportsbook}")
async def revoke_token(
    sportsbook: str,
    owner: str = Depends(get_current_owner),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
) -> RevokeResult:
    return await manager.revoke(owner, sportsbook)


@router.post("/unsubscribe/{sportsbook}")
async def unsubscribe(
    sportsbook: str,
    owner: str = Depends(get_current_owner),
    manager: TokenLifecycleManager = Depends(get_lifecycle_manager),
) -> UnsubscribeResult:
    """Drop the link and ask the sportsbook to stop notifications."""
    return await manager.unsubscribe(owner, sportsbook)
