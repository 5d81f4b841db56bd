"""
Field-level encryption for values written to the MFA store.

Wraps :mod:`core.crypto`. Each field is bound to a context string (the owning
user id) so a ciphertext copied onto another user's row fails to decrypt.
"""

import base64

from core import crypto


class FieldEncryptor:
    """Encrypt / decrypt individual string fields using AES-256-GCM."""

    def __init__(self, key: bytes) -> None:
        """
        Args:
            key: 32-byte AES key derived with :func:`core.crypto.derive_key`.
        """
        if len(key) != crypto.KEY_SIZE:
            raise ValueError("Key must be 32 bytes.")
        self._key = key

    def encrypt_field(self, plaintext: str, context: str = "") -> str:
        """Encrypt *plaintext* and return a URL-safe base64 blob."""
        blob = crypto.encrypt(
            plaintext.encode("utf-8"), self._key, context.encode("utf-8")
        )
        return base64.urlsafe_b64encode(blob).decode("ascii")

    def decrypt_field(self, encoded: str, context: str = "") -> str:
        """
        Decrypt a blob produced by :meth:`encrypt_field`.

        Raises:
            cryptography.exceptions.InvalidTag: On integrity/auth failure or
                when *context* differs from the one used to encrypt.
        """
        blob = base64.urlsafe_b64decode(encoded.encode("ascii"))
        return crypto.decrypt(blob, self._key, context.encode("utf-8")).decode("utf-8")

    @classmethod
    def from_server_secret(cls, server_secret: str, salt: bytes) -> "FieldEncryptor":
        return cls(crypto.derive_key(server_secret, salt))
