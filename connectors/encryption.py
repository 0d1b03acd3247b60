"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-CBC with PKCS7 padding from the ``cryptography`` library.
The key comes from ``config.oauth_token_encryption_key``
(env var: ``OAUTH_TOKEN_ENCRYPTION_KEY``) as 64 hex characters.  Each
blob is stored as ``iv_hex:ciphertext_hex`` with a fresh 128-bit IV.

If no valid key is configured, a random key is generated for the life of
the process (with a startup warning).  Anything encrypted under it is
unreadable after a restart, and so is everything encrypted before a key
rotation.  Generate a key with::

    python -c "import secrets; print(secrets.token_hex(32))"

There is no authentication tag: a tampered blob is only detected when
the padding or the UTF-8 decoding breaks.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Callable, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from connectors.errors import CipherIntegrityError, MalformedCiphertext

logger = logging.getLogger(__name__)

KEY_SIZE = 32   # 256 bits
IV_SIZE = 16    # 128 bits, one AES block
DELIMITER = ":"

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class TokenCipher:
    """Symmetric cipher for token strings, one instance per process."""

    def __init__(
        self,
        key: bytes,
        *,
        ephemeral: bool = False,
        iv_factory: Callable[[int], bytes] = os.urandom,
    ) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key
        self._iv_factory = iv_factory
        self.ephemeral = ephemeral

    @classmethod
    def from_hex_key(cls, key_hex: Optional[str]) -> "TokenCipher":
        """
        Build the cipher from the configured hex key.

        Falls back to a random key when the value is missing or malformed.
        """
        if key_hex and _HEX_KEY_RE.match(key_hex.strip()):
            return cls(bytes.fromhex(key_hex.strip()))

        if key_hex:
            logger.warning(
                "OAUTH_TOKEN_ENCRYPTION_KEY must be 64 hex characters. Generating a "
                "random key — stored tokens will not survive a restart."
            )
        else:
            logger.warning(
                "OAUTH_TOKEN_ENCRYPTION_KEY not set. Using a generated key — stored "
                "tokens will not survive a restart."
            )
        return cls(os.urandom(KEY_SIZE), ephemeral=True)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token string into ``iv_hex:ciphertext_hex``."""
        iv = self._iv_factory(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}{DELIMITER}{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a blob produced by :meth:`encrypt`.

        Raises
        ------
        MalformedCiphertext   – blob does not have exactly one delimiter
        CipherIntegrityError  – bad hex, bad IV, bad padding or wrong key
        """
        if not isinstance(blob, str) or blob.count(DELIMITER) != 1:
            raise MalformedCiphertext("Invalid encrypted text format")

        iv_hex, ciphertext_hex = blob.split(DELIMITER)
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as exc:
            # UnicodeDecodeError is a ValueError as well
            raise CipherIntegrityError("Stored token cannot be decrypted") from exc
