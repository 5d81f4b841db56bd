"""
Utility helpers for the MFA engine.
"""

import base64
import re
import unicodedata

# RFC 4648 base32 alphabet
BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

_WHITESPACE = re.compile(r"\s+")


# ── Base32 ────────────────────────────────────────────────────────────────────

def encode_base32(raw: bytes) -> str:
    """
    Encode raw bytes as base32 without ``=`` padding.

    A trailing group of fewer than 5 bits is zero-filled into a full symbol.

    Args:
        raw: Bytes to encode.

    Returns:
        String of ``ceil(len(raw) * 8 / 5)`` symbols from ``A-Z2-7``.
    """
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def decode_base32(secret: str) -> bytes:
    """
    Leniently decode a base32 secret.

    Whitespace and trailing ``=`` padding are stripped and the input is
    upper-cased. Symbols outside the alphabet are skipped rather than
    rejected, so transcription noise such as dashes never raises. Only whole
    bytes are emitted; leftover bits are dropped.

    Args:
        secret: Base32 string as typed or stored.

    Returns:
        Decoded key bytes (possibly empty).
    """
    clean = _WHITESPACE.sub("", secret).rstrip("=").upper()
    out = bytearray()
    value = 0
    bits = 0
    for ch in clean:
        idx = BASE32_ALPHABET.find(ch)
        if idx == -1:
            continue
        value = ((value << 5) | idx) & 0xFFF
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((value >> bits) & 0xFF)
    return bytes(out)


def strip_whitespace(text: str) -> str:
    """Remove every whitespace character from *text*."""
    return _WHITESPACE.sub("", text)


# ── Labels ────────────────────────────────────────────────────────────────────

def sanitise_label(text: str, max_length: int = 128) -> str:
    """Remove control characters and limit label length."""
    text = unicodedata.normalize("NFC", text)
    text = "".join(ch for ch in text if unicodedata.category(ch)[0] != "C")
    return text[:max_length].strip()


def format_otp(code: str, group: int = 3) -> str:
    """
    Format an OTP code with spaces for readability.

    Example::

        >>> format_otp("123456")
        "123 456"
    """
    return " ".join(code[i : i + group] for i in range(0, len(code), group))


# ── Validation ────────────────────────────────────────────────────────────────

def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def validate_digits(digits: int) -> None:
    if not _is_positive_int(digits):
        raise ValueError("Digits must be a positive integer.")


def validate_period(period: int) -> None:
    if not _is_positive_int(period):
        raise ValueError("Period must be a positive number of seconds.")
