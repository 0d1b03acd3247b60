"""
Error taxonomy for the credential lifecycle.

Each error carries the HTTP status the API layer answers with and a short
machine-readable ``error_code``.  Cipher failures subclass
``ReconnectionRequired``: a credential that cannot be decrypted is as
unusable as one whose refresh token has lapsed.
"""

from __future__ import annotations

from typing import Optional


class CredentialError(Exception):
    """Base class for every error surfaced by the connectors package."""

    status_code: int = 500
    error_code: str = "credential_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidRequest(CredentialError):
    status_code = 400
    error_code = "invalid_request"


class NotLinked(CredentialError):
    status_code = 404
    error_code = "not_linked"


class ReconnectionRequired(CredentialError):
    status_code = 401
    error_code = "reconnection_required"


class CipherError(ReconnectionRequired):
    """Stored ciphertext cannot be turned back into a token."""

    error_code = "credential_unusable"


class MalformedCiphertext(CipherError):
    pass


class CipherIntegrityError(CipherError):
    pass


class ProviderError(CredentialError):
    """Failure talking to a sportsbook authorization server."""

    status_code = 502
    error_code = "provider_error"


class ProviderRejected(ProviderError):
    """The provider answered with a non-2xx status."""

    error_code = "provider_rejected"

    def __init__(
        self,
        http_status: int,
        provider_error_code: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.http_status = http_status
        self.provider_error_code = provider_error_code
        self.description = description
        # Provider 4xx answers are user-facing (bad code, revoked grant);
        # anything else is reported as a bad gateway.
        if 400 <= http_status < 500:
            self.status_code = http_status
        super().__init__(
            provider_error_code
            or description
            or f"Provider rejected the request with status {http_status}"
        )


class ProviderUnreachable(ProviderError):
    status_code = 503
    error_code = "provider_unreachable"
