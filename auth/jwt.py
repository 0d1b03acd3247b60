"""
Owner bearer tokens — creation and verification.

Tokens are base64-encoded JSON payloads (``{"sub": <owner email>, "exp": ...}``)
signed with HMAC-SHA256.  The user service issues them; this module only
has to agree on the format.  Secret key is ``config.jwt_secret``
(env var: ``JWT_SECRET``), read on every call.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode

from fastapi import HTTPException, status

from config.settings import config


def _sign(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(owner_email: str, *, expires_in: int | None = None) -> str:
    """Create a signed token for ``owner_email``."""
    lifetime = config.jwt_expiry_seconds if expires_in is None else expires_in
    raw = json.dumps({"sub": owner_email, "exp": int(time.time()) + lifetime}).encode()
    return f"{b64encode(raw).decode()}.{_sign(raw)}"


def verify_token(token: str) -> str:
    """
    Return the owner email carried by ``token``.

    Raises ``HTTPException(401)`` on a bad signature, a malformed payload or
    an expired token.
    """
    try:
        encoded, signature = token.split(".", 1)
        raw = b64decode(encoded, validate=True)
        if not hmac.compare_digest(signature, _sign(raw)):
            raise ValueError("bad signature")
        claims = json.loads(raw)
        if claims.get("exp", 0) < time.time():
            raise ValueError("token expired")
        owner_email = claims.get("sub")
        if not owner_email:
            raise ValueError("missing subject")
    except (ValueError, TypeError, AttributeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Not authorized: {exc}",
        ) from None
    return owner_email
