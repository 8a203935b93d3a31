"""Credential encryption at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key is loaded from ``Settings.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``).  Unlike bearer tokens cached in memory, stored
credentials must always be encrypted, so a missing key is a startup error.

Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import json
import logging

from cryptography.fernet import Fernet, InvalidToken

from src.integrations.base import Credential

logger = logging.getLogger("rebate.integrations.crypto")


class CredentialDecryptError(ValueError):
    """A stored credential could not be decrypted with the configured key."""


class CredentialCipher:
    """Encrypt / decrypt ``Credential`` objects for database storage."""

    def __init__(self, key: str | bytes) -> None:
        if not key:
            raise ValueError(
                "TOKEN_ENCRYPTION_KEY is not set; credentials cannot be stored"
            )
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid TOKEN_ENCRYPTION_KEY: {exc}") from exc

    def encrypt(self, credential: Credential) -> str:
        """Return the Fernet ciphertext (URL-safe base64) of a credential."""
        plaintext = json.dumps(credential.to_dict(), separators=(",", ":"))
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> Credential:
        """Decrypt a stored credential.

        Raises:
            CredentialDecryptError: On a wrong key or tampered ciphertext.
        """
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode())
        except InvalidToken as exc:
            logger.error("Stored credential failed Fernet verification")
            raise CredentialDecryptError("Stored credential could not be decrypted") from exc
        return Credential.from_dict(json.loads(plaintext))
