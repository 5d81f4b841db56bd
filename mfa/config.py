"""
Runtime settings for the MFA flows, read from the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from core.totp import DEFAULT_CONFIG, TotpConfig


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.")


@dataclass(frozen=True)
class MfaSettings:
    """Settings shared by the CLI and :class:`mfa.service.MfaService`."""

    db_path: Optional[Path] = None      # None → MfaDatabase default location
    server_secret: str = ""             # APEX_MFA_KEY, at-rest encryption
    issuer: str = "Apex Bank"
    max_attempts: int = 5
    lockout_seconds: int = 300
    window_steps: int = 1
    totp: TotpConfig = field(default=DEFAULT_CONFIG)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.lockout_seconds < 1:
            raise ValueError("lockout_seconds must be at least 1.")
        if self.window_steps < 0:
            raise ValueError("window_steps must not be negative.")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MfaSettings":
        """Build settings from ``APEX_MFA_*`` environment variables."""
        env = os.environ if env is None else env
        db = env.get("APEX_MFA_DB")
        return cls(
            db_path=Path(db).expanduser() if db else None,
            server_secret=env.get("APEX_MFA_KEY", ""),
            issuer=env.get("APEX_MFA_ISSUER", "Apex Bank"),
            max_attempts=_int_env(env, "APEX_MFA_MAX_ATTEMPTS", 5),
            lockout_seconds=_int_env(env, "APEX_MFA_LOCKOUT_SECONDS", 300),
            window_steps=_int_env(env, "APEX_MFA_WINDOW", 1),
        )
