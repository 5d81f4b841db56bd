"""
HOTP (HMAC-based One-Time Password) primitive following RFC 4226.

TOTP codes are HOTP codes whose counter is derived from the clock; see
:mod:`core.totp`.
"""

import hmac
import struct
from enum import Enum


class Algorithm(str, Enum):
    """Supported HMAC algorithms."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"


_ALG_MAP: dict[str, str] = {
    Algorithm.SHA1: "sha1",
    Algorithm.SHA256: "sha256",
    Algorithm.SHA512: "sha512",
}


def counter_bytes(counter: int) -> bytes:
    """Pack ``counter`` as an 8-byte big-endian unsigned integer."""
    return struct.pack(">Q", counter)


def generate_hotp(
    key: bytes,
    counter: int,
    digits: int = 6,
    algorithm: Algorithm = Algorithm.SHA1,
) -> str:
    """
    Generate an HOTP code.

    Args:
        key:       Raw (already base32-decoded) key bytes.
        counter:   Moving factor, packed as an 8-byte big-endian counter.
        digits:    Number of OTP digits.
        algorithm: HMAC algorithm.

    Returns:
        Zero-padded OTP string of exactly ``digits`` characters.
    """
    digest = hmac.new(key, counter_bytes(counter), _ALG_MAP[algorithm]).digest()

    # Dynamic truncation (RFC 4226 §5.3)
    offset = digest[-1] & 0x0F
    code = (
        (digest[offset] & 0x7F) << 24
        | (digest[offset + 1] & 0xFF) << 16
        | (digest[offset + 2] & 0xFF) << 8
        | (digest[offset + 3] & 0xFF)
    )
    otp = code % (10**digits)
    return str(otp).zfill(digits)
