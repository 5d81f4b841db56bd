"""
TOTP (Time-based One-Time Password) engine following RFC 6238.

Produces codes identical to Google Authenticator with the default
configuration (30-second steps, 6 digits, HMAC-SHA1). Every function here is
pure apart from reading the clock and the OS random source; nothing is logged.
"""

import hmac
import secrets
import time
from dataclasses import dataclass
from typing import Optional

from core.errors import RandomnessUnavailable
from core.hotp import Algorithm, generate_hotp
from core.utils import (
    decode_base32,
    encode_base32,
    strip_whitespace,
    validate_digits,
    validate_period,
)

SECRET_BYTES = 20  # 160-bit secrets, RFC 4226 §4 recommendation


@dataclass(frozen=True)
class TotpConfig:
    """Step duration, code length and hash shared with the authenticator app."""

    step_seconds: int = 30
    digits: int = 6
    algorithm: Algorithm = Algorithm.SHA1

    def __post_init__(self) -> None:
        validate_period(self.step_seconds)
        validate_digits(self.digits)
        # Accept "SHA256" etc. as well as the enum member
        object.__setattr__(self, "algorithm", Algorithm(self.algorithm))


DEFAULT_CONFIG = TotpConfig()


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ── Secret provisioning ───────────────────────────────────────────────────────

def generate_secret(byte_length: int = SECRET_BYTES) -> str:
    """
    Generate a new shared secret.

    Args:
        byte_length: Entropy in bytes (default 20).

    Returns:
        Unpadded base32 string of ``ceil(byte_length * 8 / 5)`` symbols.

    Raises:
        ValueError:            If ``byte_length`` is not a positive integer.
        RandomnessUnavailable: If the OS random source cannot be read.
    """
    if isinstance(byte_length, bool) or not isinstance(byte_length, int) or byte_length < 1:
        raise ValueError("byte_length must be a positive integer.")
    try:
        raw = secrets.token_bytes(byte_length)
    except (OSError, NotImplementedError) as exc:
        raise RandomnessUnavailable("Secure random source unavailable.") from exc
    return encode_base32(raw)


# ── Code derivation ───────────────────────────────────────────────────────────

def time_step(at_time_ms: int, step_seconds: int = 30) -> int:
    """Return the RFC 6238 counter ``floor(t / 1000 / step)`` for *at_time_ms*."""
    return int(at_time_ms) // (1000 * step_seconds)


def compute_code(
    secret: str,
    at_time_ms: Optional[int] = None,
    config: TotpConfig = DEFAULT_CONFIG,
) -> str:
    """
    Compute the TOTP code for *secret* at a point in time.

    Args:
        secret:     Base32 shared secret.
        at_time_ms: Milliseconds since the Unix epoch (now if None).
        config:     Step, digits and hash algorithm.

    Returns:
        OTP string, zero-padded to ``config.digits`` characters.
    """
    t = _now_ms() if at_time_ms is None else at_time_ms
    counter = time_step(t, config.step_seconds)
    return generate_hotp(
        decode_base32(secret),
        counter,
        digits=config.digits,
        algorithm=config.algorithm,
    )


def remaining_seconds(
    config: TotpConfig = DEFAULT_CONFIG,
    at_time_ms: Optional[int] = None,
) -> int:
    """Return seconds until the current TOTP step expires."""
    t = _now_ms() if at_time_ms is None else at_time_ms
    return config.step_seconds - (int(t) // 1000) % config.step_seconds


# ── Verification ──────────────────────────────────────────────────────────────

def _is_code_shaped(code: str, digits: int) -> bool:
    return len(code) == digits and code.isascii() and code.isdigit()


def verify_code(
    secret: str,
    submitted_code: str,
    window_steps: int = 1,
    config: TotpConfig = DEFAULT_CONFIG,
    at_time_ms: Optional[int] = None,
) -> bool:
    """
    Validate a submitted code within ±``window_steps`` time steps.

    Whitespace is removed from the code first; anything that is not then
    exactly ``config.digits`` decimal digits is rejected before any HMAC is
    computed. Wrong and malformed codes are indistinguishable to the caller.

    Args:
        secret:         Stored base32 shared secret.
        submitted_code: Code as typed by the user.
        window_steps:   Adjacent steps to accept on either side (default 1).
        config:         Step, digits and hash algorithm.
        at_time_ms:     Override clock in milliseconds since the epoch.

    Returns:
        True if some step in the window produces the submitted code.
    """
    if not isinstance(submitted_code, str) or not isinstance(secret, str):
        return False
    code = strip_whitespace(submitted_code)
    if not _is_code_shaped(code, config.digits):
        return False
    if window_steps < 0 or not decode_base32(secret):
        return False

    now = _now_ms() if at_time_ms is None else at_time_ms
    step_ms = config.step_seconds * 1000

    for w in range(-window_steps, window_steps + 1):
        candidate_ms = now + w * step_ms
        if candidate_ms < 0:
            continue
        expected = compute_code(secret, candidate_ms, config)
        if hmac.compare_digest(code, expected):
            return True
    return False
