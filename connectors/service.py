"""
Process-wide wiring of the credential lifecycle.

The cipher key, the gateway and the scheduler are built once per process
and never mutated afterwards.  Rotating the encryption key is an
administrative operation: ciphertext written under the old key becomes
unreadable and the affected owners have to reconnect.
"""

from __future__ import annotations

from functools import lru_cache

from config.settings import config
from connectors.encryption import TokenCipher
from connectors.gateway import SportsbookGateway
from connectors.scheduler import TokenRefreshScheduler
from connectors.store import CredentialStore
from connectors.token_manager import TokenLifecycleManager


@lru_cache(maxsize=None)
def get_token_cipher() -> TokenCipher:
    return TokenCipher.from_hex_key(config.oauth_token_encryption_key)


@lru_cache(maxsize=None)
def get_gateway() -> SportsbookGateway:
    return SportsbookGateway.from_settings(config)


@lru_cache(maxsize=None)
def get_credential_store() -> CredentialStore:
    return CredentialStore()


@lru_cache(maxsize=None)
def get_lifecycle_manager() -> TokenLifecycleManager:
    return TokenLifecycleManager(
        store=get_credential_store(),
        gateway=get_gateway(),
        cipher=get_token_cipher(),
        redirect_uri=config.oauth_redirect_uri,
    )


@lru_cache(maxsize=None)
def get_refresh_scheduler() -> TokenRefreshScheduler:
    return TokenRefreshScheduler(
        get_lifecycle_manager(),
        get_credential_store(),
        deactivate_on_unreachable=config.scheduler_deactivate_on_unreachable,
    )
