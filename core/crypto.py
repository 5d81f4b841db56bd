"""
At-rest protection for stored MFA secrets.

Key derivation  : PBKDF2-HMAC-SHA256 over the server secret key
Encryption      : AES-256-GCM, bound to the owning user via associated data
"""

import hashlib
import secrets

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# ── Constants ────────────────────────────────────────────────────────────────

SALT_SIZE = 32          # 256-bit salt
NONCE_SIZE = 12         # 96-bit nonce (GCM recommendation)
KEY_SIZE = 32           # 256-bit AES key
PBKDF2_ITERATIONS = 480_000  # OWASP 2023 recommendation for PBKDF2-SHA256
PBKDF2_HASH = "sha256"


# ── Key derivation ────────────────────────────────────────────────────────────

def derive_key(server_secret: str, salt: bytes) -> bytes:
    """
    Derive the 256-bit storage key from the configured server secret.

    Args:
        server_secret: Value of ``APEX_MFA_KEY``.
        salt:          Random 32-byte salt kept alongside the data.

    Returns:
        32-byte derived key.
    """
    if not server_secret:
        raise ValueError("Server secret must not be empty.")
    return hashlib.pbkdf2_hmac(
        PBKDF2_HASH,
        server_secret.encode("utf-8"),
        salt,
        PBKDF2_ITERATIONS,
        dklen=KEY_SIZE,
    )


def generate_salt() -> bytes:
    """Return a cryptographically random 32-byte salt."""
    return secrets.token_bytes(SALT_SIZE)


# ── AES-256-GCM ───────────────────────────────────────────────────────────────

def encrypt(plaintext: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
    """
    Encrypt *plaintext* with AES-256-GCM.

    Layout of returned blob::

        [ nonce (12 bytes) | ciphertext+tag ]

    ``associated_data`` is authenticated but not stored; the same value must
    be supplied to :func:`decrypt`.

    Raises:
        ValueError: If key length is not 32 bytes.
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data or None)
    return nonce + ciphertext


def decrypt(blob: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
    """
    Decrypt a blob produced by :func:`encrypt`.

    Raises:
        ValueError: If key length is not 32 bytes.
        cryptography.exceptions.InvalidTag: Wrong key, wrong associated data
            or tampered blob.
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    nonce = blob[:NONCE_SIZE]
    ciphertext = blob[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, associated_data or None)
