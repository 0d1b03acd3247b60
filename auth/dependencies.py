"""
FastAPI dependency resolving the authenticated owner.
"""

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_bearer_scheme = HTTPBearer()


async def get_current_owner(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """
    Extract and verify the Bearer token, returning the owner's email.
    """
    from auth.jwt import verify_token

    return verify_token(credentials.credentials)
