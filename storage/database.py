"""
SQLite-backed MFA store with field-level AES-256-GCM encryption.

Schema
------
users
  id           TEXT     PRIMARY KEY
  mfa_secret   TEXT                -- encrypted base32 secret (NULL = none)
  mfa_enabled  INTEGER  NOT NULL   -- 0 / 1

trusted_devices
  id           INTEGER  PRIMARY KEY AUTOINCREMENT
  user_id      TEXT     NOT NULL   -- references users.id
  device_id    TEXT     NOT NULL   -- opaque token supplied by the caller
  label        TEXT     NOT NULL
  last_seen_at TEXT     NOT NULL   -- ISO-8601 UTC
  UNIQUE (user_id, device_id)

meta
  key          TEXT PRIMARY KEY
  value        TEXT                -- salt stored as hex (NOT encrypted)
"""

import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from storage.encryption import FieldEncryptor


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass
class MfaUser:
    """MFA state of a single user."""

    user_id: str
    mfa_secret: Optional[str] = None   # base32, decrypted
    mfa_enabled: bool = False


@dataclass
class TrustedDevice:
    """A device that may skip the MFA challenge for its user."""

    user_id: str
    device_id: str
    label: str
    last_seen_at: datetime
    id: Optional[int] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Database ──────────────────────────────────────────────────────────────────

class MfaDatabase:
    """
    SQLite store with transparent secret encryption.

    One connection is shared between threads; a lock serialises every
    statement and transaction on it.
    """

    # Default location: %APPDATA%\apex-mfa\mfa.db  (Windows)
    #                   ~/.local/share/apex-mfa/mfa.db  (Linux/macOS)
    _DEFAULT_DIR = Path(
        os.environ.get("APPDATA", Path.home() / ".local" / "share")
    ) / "apex-mfa"

    def __init__(
        self,
        db_path: Optional[Path] = None,
        encryptor: Optional[FieldEncryptor] = None,
    ) -> None:
        """
        Args:
            db_path:   Path to the SQLite file. Defaults to
                       ``~/.local/share/apex-mfa/mfa.db``.
            encryptor: :class:`~storage.encryption.FieldEncryptor` used for
                       secrets. Without one the store is locked and any
                       secret read or write raises.
        """
        self._path = Path(db_path) if db_path else (self._DEFAULT_DIR / "mfa.db")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._encryptor = encryptor
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._bootstrap()

    # ── Schema ───────────────────────────────────────────────────────────

    def _bootstrap(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id          TEXT    PRIMARY KEY,
                    mfa_secret  TEXT,
                    mfa_enabled INTEGER NOT NULL DEFAULT 0
                );
                CREATE TABLE IF NOT EXISTS trusted_devices (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id      TEXT    NOT NULL
                                 REFERENCES users (id) ON DELETE CASCADE,
                    device_id    TEXT    NOT NULL,
                    label        TEXT    NOT NULL,
                    last_seen_at TEXT    NOT NULL,
                    UNIQUE (user_id, device_id)
                );
                CREATE TABLE IF NOT EXISTS meta (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

    # ── Salt / meta ───────────────────────────────────────────────────────

    def get_salt(self) -> Optional[bytes]:
        """Return stored salt or None if database is fresh."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM meta WHERE key='salt'"
            ).fetchone()
        return bytes.fromhex(row["value"]) if row else None

    def set_salt(self, salt: bytes) -> None:
        """Persist the salt (stored as hex, NOT encrypted)."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES ('salt', ?)",
                (salt.hex(),),
            )

    # ── Encryptor ─────────────────────────────────────────────────────────

    def set_encryptor(self, encryptor: Optional[FieldEncryptor]) -> None:
        """Attach or replace the field encryptor."""
        self._encryptor = encryptor

    def _enc(self, value: str, user_id: str) -> str:
        if self._encryptor is None:
            raise RuntimeError("Database is locked – no encryptor set.")
        return self._encryptor.encrypt_field(value, context=user_id)

    def _dec(self, value: str, user_id: str) -> str:
        if self._encryptor is None:
            raise RuntimeError("Database is locked – no encryptor set.")
        return self._encryptor.decrypt_field(value, context=user_id)

    # ── Users ─────────────────────────────────────────────────────────────

    def get_user(self, user_id: str) -> Optional[MfaUser]:
        """Fetch a user's MFA state, decrypting the secret."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE id=?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        secret = row["mfa_secret"]
        return MfaUser(
            user_id=row["id"],
            mfa_secret=self._dec(secret, user_id) if secret is not None else None,
            mfa_enabled=bool(row["mfa_enabled"]),
        )

    def save_mfa_secret(self, user_id: str, secret: str, enabled: bool = False) -> None:
        """Store a (new) secret for *user_id*, creating the user row if needed."""
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO users (id, mfa_secret, mfa_enabled) VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    mfa_secret=excluded.mfa_secret,
                    mfa_enabled=excluded.mfa_enabled
                """,
                (user_id, self._enc(secret, user_id), int(enabled)),
            )

    def set_mfa_enabled(self, user_id: str, enabled: bool) -> None:
        """Flip the MFA-enabled flag of an existing user."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE users SET mfa_enabled=? WHERE id=?",
                (int(enabled), user_id),
            )
        if cursor.rowcount == 0:
            raise LookupError(f"User {user_id!r} not found.")

    def clear_mfa(self, user_id: str) -> int:
        """
        Clear secret and flag and forget every trusted device of *user_id*.

        Both changes happen in one transaction. Returns the number of trusted
        devices removed.
        """
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE users SET mfa_secret=NULL, mfa_enabled=0 WHERE id=?",
                (user_id,),
            )
            cursor = self._conn.execute(
                "DELETE FROM trusted_devices WHERE user_id=?", (user_id,)
            )
        return cursor.rowcount

    # ── Trusted devices ───────────────────────────────────────────────────

    def upsert_trusted_device(
        self,
        user_id: str,
        device_id: str,
        label: str,
        seen_at: Optional[datetime] = None,
    ) -> None:
        """Trust *device_id* for *user_id*, or refresh its ``last_seen_at``."""
        seen = (seen_at or _utcnow()).isoformat()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO trusted_devices (user_id, device_id, label, last_seen_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, device_id) DO UPDATE SET
                    last_seen_at=excluded.last_seen_at
                """,
                (user_id, device_id, label, seen),
            )

    def get_trusted_device(self, user_id: str, device_id: str) -> Optional[TrustedDevice]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM trusted_devices WHERE user_id=? AND device_id=?",
                (user_id, device_id),
            ).fetchone()
        return self._row_to_device(row) if row else None

    def touch_trusted_device(
        self, user_id: str, device_id: str, seen_at: Optional[datetime] = None
    ) -> bool:
        """Refresh ``last_seen_at``; return False if the device is not trusted."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE trusted_devices SET last_seen_at=? WHERE user_id=? AND device_id=?",
                ((seen_at or _utcnow()).isoformat(), user_id, device_id),
            )
        return cursor.rowcount > 0

    def list_trusted_devices(self, user_id: str) -> List[TrustedDevice]:
        """Return the user's trusted devices, most recently seen first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM trusted_devices WHERE user_id=? "
                "ORDER BY last_seen_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_device(r) for r in rows]

    def delete_trusted_device(self, user_id: str, device_row_id: int) -> bool:
        """Delete one trusted device, only if it belongs to *user_id*."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM trusted_devices WHERE id=? AND user_id=?",
                (device_row_id, user_id),
            )
        return cursor.rowcount > 0

    # ── Internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_device(row: sqlite3.Row) -> TrustedDevice:
        return TrustedDevice(
            id=row["id"],
            user_id=row["user_id"],
            device_id=row["device_id"],
            label=row["label"],
            last_seen_at=datetime.fromisoformat(row["last_seen_at"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
