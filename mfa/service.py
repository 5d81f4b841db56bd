"""
MFA account flows: setup, confirmation, sign-in challenge and removal.

Each flow returns an :class:`MfaResult` instead of raising for user input, so
a web or CLI front end can show ``message`` directly. Wrong and malformed
codes produce the same "Invalid code." message.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from core.totp import generate_secret, verify_code
from core.utils import sanitise_label
from mfa.config import MfaSettings
from mfa.lockout import AttemptLimiter
from qr.provisioning import build_otpauth_uri
from storage.database import MfaDatabase, TrustedDevice

logger = logging.getLogger(__name__)

SIGN_IN_AGAIN = "Please sign in again."
START_SETUP_FIRST = "Start setup first."
INVALID_CODE = "Invalid code."
TOO_MANY_ATTEMPTS = "Too many attempts. Try again later."
MISSING_DEVICE = "Missing device."

DEVICE_LABEL_LENGTH = 80
DEFAULT_DEVICE_LABEL = "This device"


@dataclass
class MfaResult:
    """Outcome of a flow step."""

    ok: bool
    message: str = ""
    secret: Optional[str] = None


def device_label(user_agent: str) -> str:
    """Label a trusted device after the browser's user agent."""
    return sanitise_label(user_agent or "", DEVICE_LABEL_LENGTH) or DEFAULT_DEVICE_LABEL


class MfaService:
    """Runs the MFA flows against an :class:`MfaDatabase`."""

    def __init__(
        self,
        db: MfaDatabase,
        settings: Optional[MfaSettings] = None,
        limiter: Optional[AttemptLimiter] = None,
    ) -> None:
        self._db = db
        self._settings = settings or MfaSettings()
        if limiter is None:
            limiter = AttemptLimiter(
                self._settings.max_attempts, self._settings.lockout_seconds
            )
        self._limiter = limiter

    # ── Setup ─────────────────────────────────────────────────────────────

    def start_setup(self, user_id: Optional[str]) -> MfaResult:
        """Generate and store a fresh secret; MFA stays off until confirmed."""
        if not user_id:
            return MfaResult(False, SIGN_IN_AGAIN)
        secret = generate_secret()
        self._db.save_mfa_secret(user_id, secret, enabled=False)
        logger.info("MFA setup started for user %s.", user_id)
        return MfaResult(True, secret=secret)

    def provisioning_uri(self, user_id: str, account_name: str) -> Optional[str]:
        """Key URI for the user's stored secret, or None before setup."""
        user = self._db.get_user(user_id)
        if user is None or not user.mfa_secret:
            return None
        return build_otpauth_uri(
            user.mfa_secret,
            account_name,
            issuer=self._settings.issuer,
            config=self._settings.totp,
        )

    def confirm_setup(
        self,
        user_id: Optional[str],
        code: str,
        device_id: Optional[str] = None,
        user_agent: str = "",
    ) -> MfaResult:
        """Enable MFA once the user proves their app produces valid codes."""
        if not user_id:
            return MfaResult(False, SIGN_IN_AGAIN)

        user = self._db.get_user(user_id)
        if user is None or not user.mfa_secret:
            return MfaResult(False, START_SETUP_FIRST)

        failure = self._check_code(user_id, user.mfa_secret, code)
        if failure:
            return failure

        self._db.set_mfa_enabled(user_id, True)
        logger.info("MFA enabled for user %s.", user_id)
        if device_id:
            self._trust_device(user_id, device_id, user_agent)
        return MfaResult(True)

    # ── Sign-in challenge ─────────────────────────────────────────────────

    def requires_challenge(self, user_id: str, device_id: Optional[str]) -> bool:
        """
        Return True if signing in from *device_id* needs a code.

        A trusted device has its ``last_seen_at`` refreshed.
        """
        user = self._db.get_user(user_id)
        if user is None or not user.mfa_enabled or not user.mfa_secret:
            return False
        if device_id and self._db.touch_trusted_device(user_id, device_id):
            return False
        return True

    def verify_challenge(
        self,
        user_id: Optional[str],
        code: str,
        remember: bool = False,
        device_id: Optional[str] = None,
        user_agent: str = "",
    ) -> MfaResult:
        """Check a sign-in code; optionally remember the device."""
        if not user_id:
            return MfaResult(False, SIGN_IN_AGAIN)

        user = self._db.get_user(user_id)
        if user is None or not user.mfa_enabled or not user.mfa_secret:
            return MfaResult(True)

        failure = self._check_code(user_id, user.mfa_secret, code)
        if failure:
            return failure

        if remember and device_id:
            self._trust_device(user_id, device_id, user_agent)
        return MfaResult(True)

    # ── Removal ───────────────────────────────────────────────────────────

    def disable(self, user_id: Optional[str]) -> MfaResult:
        """Turn MFA off and forget every trusted device."""
        if not user_id:
            return MfaResult(False, SIGN_IN_AGAIN)
        removed = self._db.clear_mfa(user_id)
        self._limiter.reset(user_id)
        logger.info("MFA disabled for user %s (%d trusted devices removed).", user_id, removed)
        return MfaResult(True)

    def list_trusted_devices(self, user_id: str) -> List[TrustedDevice]:
        return self._db.list_trusted_devices(user_id)

    def remove_trusted_device(
        self, user_id: Optional[str], device_row_id: Union[int, str, None]
    ) -> MfaResult:
        if not user_id:
            return MfaResult(False, SIGN_IN_AGAIN)
        raw = str(device_row_id if device_row_id is not None else "").strip()
        if not raw:
            return MfaResult(False, MISSING_DEVICE)
        # Unknown or foreign ids delete nothing
        if raw.isdigit() and self._db.delete_trusted_device(user_id, int(raw)):
            logger.info("Trusted device %s removed for user %s.", raw, user_id)
        return MfaResult(True)

    # ── Internals ─────────────────────────────────────────────────────────

    def _check_code(self, user_id: str, secret: str, code: str) -> Optional[MfaResult]:
        if self._limiter.is_locked(user_id):
            logger.warning("MFA attempt rejected for locked-out user %s.", user_id)
            return MfaResult(False, TOO_MANY_ATTEMPTS)

        ok = verify_code(
            secret,
            str(code if code is not None else ""),
            window_steps=self._settings.window_steps,
            config=self._settings.totp,
        )
        if not ok:
            left = self._limiter.record_failure(user_id)
            logger.warning("Invalid MFA code for user %s (%d attempts left).", user_id, left)
            return MfaResult(False, INVALID_CODE)

        self._limiter.reset(user_id)
        return None

    def _trust_device(self, user_id: str, device_id: str, user_agent: str) -> None:
        self._db.upsert_trusted_device(user_id, device_id, device_label(user_agent))
        logger.info("Device trusted for user %s.", user_id)
