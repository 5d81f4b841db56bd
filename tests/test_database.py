"""Tests for storage.database."""

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.crypto import derive_key, generate_salt
from storage.database import MfaDatabase
from storage.encryption import FieldEncryptor


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture()
def tmp_db(tmp_path: Path) -> MfaDatabase:
    """Return a fresh database with an encryptor attached."""
    db = MfaDatabase(db_path=tmp_path / "test.db")
    salt = generate_salt()
    db.set_salt(salt)
    db.set_encryptor(FieldEncryptor(derive_key("test_secret_123", salt)))
    yield db
    db.close()


T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# ── Salt / meta ───────────────────────────────────────────────────────────────

def test_fresh_db_no_salt(tmp_path: Path) -> None:
    db = MfaDatabase(db_path=tmp_path / "fresh.db")
    assert db.get_salt() is None
    db.close()


def test_set_and_get_salt(tmp_path: Path) -> None:
    db = MfaDatabase(db_path=tmp_path / "salt.db")
    salt = generate_salt()
    db.set_salt(salt)
    assert db.get_salt() == salt
    db.close()


# ── Users ─────────────────────────────────────────────────────────────────────

def test_unknown_user(tmp_db: MfaDatabase) -> None:
    assert tmp_db.get_user("nobody") is None


def test_save_and_get_secret(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    user = tmp_db.get_user("alice")
    assert user.mfa_secret == "JBSWY3DPEHPK3PXP"
    assert user.mfa_enabled is False


def test_secret_encrypted_on_disk(tmp_db: MfaDatabase, tmp_path: Path) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    raw = sqlite3.connect(str(tmp_path / "test.db"))
    (stored,) = raw.execute("SELECT mfa_secret FROM users WHERE id='alice'").fetchone()
    raw.close()
    assert "JBSWY3DPEHPK3PXP" not in stored


def test_resetup_replaces_secret_and_disables(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    tmp_db.set_mfa_enabled("alice", True)
    tmp_db.save_mfa_secret("alice", "GEZDGNBVGY3TQOJQ")
    user = tmp_db.get_user("alice")
    assert user.mfa_secret == "GEZDGNBVGY3TQOJQ"
    assert not user.mfa_enabled


def test_set_enabled_unknown_user_raises(tmp_db: MfaDatabase) -> None:
    with pytest.raises(LookupError):
        tmp_db.set_mfa_enabled("ghost", True)


def test_locked_db_raises(tmp_path: Path) -> None:
    db = MfaDatabase(db_path=tmp_path / "locked.db")
    with pytest.raises(RuntimeError):
        db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    db.close()


def test_wrong_key_cannot_decrypt(tmp_path: Path) -> None:
    db = MfaDatabase(db_path=tmp_path / "enc.db")
    salt = generate_salt()
    db.set_salt(salt)
    db.set_encryptor(FieldEncryptor(derive_key("correct", salt)))
    db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    db.close()

    db2 = MfaDatabase(db_path=tmp_path / "enc.db")
    db2.set_encryptor(FieldEncryptor(derive_key("wrong", salt)))
    with pytest.raises(Exception):
        db2.get_user("alice")
    db2.close()


# ── Trusted devices ───────────────────────────────────────────────────────────

def test_upsert_creates_then_refreshes(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    tmp_db.upsert_trusted_device("alice", "dev-1", "Firefox", seen_at=T0)
    tmp_db.upsert_trusted_device("alice", "dev-1", "Other label", seen_at=T0 + timedelta(days=1))

    devices = tmp_db.list_trusted_devices("alice")
    assert len(devices) == 1
    assert devices[0].label == "Firefox"
    assert devices[0].last_seen_at == T0 + timedelta(days=1)


def test_list_orders_most_recent_first(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    tmp_db.upsert_trusted_device("alice", "old", "a", seen_at=T0)
    tmp_db.upsert_trusted_device("alice", "new", "b", seen_at=T0 + timedelta(hours=1))
    assert [d.device_id for d in tmp_db.list_trusted_devices("alice")] == ["new", "old"]


def test_touch_trusted_device(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    assert not tmp_db.touch_trusted_device("alice", "dev-1")
    tmp_db.upsert_trusted_device("alice", "dev-1", "x", seen_at=T0)
    assert tmp_db.touch_trusted_device("alice", "dev-1", seen_at=T0 + timedelta(minutes=5))
    assert tmp_db.get_trusted_device("alice", "dev-1").last_seen_at == T0 + timedelta(minutes=5)


def test_delete_device_only_for_owner(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP")
    tmp_db.save_mfa_secret("bob", "JBSWY3DPEHPK3PXP")
    tmp_db.upsert_trusted_device("alice", "dev-1", "x")
    row_id = tmp_db.get_trusted_device("alice", "dev-1").id

    assert not tmp_db.delete_trusted_device("bob", row_id)
    assert tmp_db.get_trusted_device("alice", "dev-1") is not None
    assert tmp_db.delete_trusted_device("alice", row_id)
    assert tmp_db.get_trusted_device("alice", "dev-1") is None


def test_clear_mfa_removes_secret_and_devices(tmp_db: MfaDatabase) -> None:
    tmp_db.save_mfa_secret("alice", "JBSWY3DPEHPK3PXP", enabled=True)
    tmp_db.save_mfa_secret("bob", "JBSWY3DPEHPK3PXP", enabled=True)
    tmp_db.upsert_trusted_device("alice", "dev-1", "x")
    tmp_db.upsert_trusted_device("alice", "dev-2", "y")
    tmp_db.upsert_trusted_device("bob", "dev-1", "z")

    assert tmp_db.clear_mfa("alice") == 2

    user = tmp_db.get_user("alice")
    assert user.mfa_secret is None and not user.mfa_enabled
    assert tmp_db.list_trusted_devices("alice") == []
    assert len(tmp_db.list_trusted_devices("bob")) == 1


# ── Threads ───────────────────────────────────────────────────────────────────

def test_concurrent_writers_share_one_connection(tmp_db: MfaDatabase) -> None:
    users = [f"user-{i}" for i in range(8)]
    errors = []

    def worker(user_id: str) -> None:
        try:
            for n in range(25):
                tmp_db.save_mfa_secret(user_id, "JBSWY3DPEHPK3PXP", enabled=True)
                tmp_db.upsert_trusted_device(user_id, f"dev-{n}", "x")
                tmp_db.touch_trusted_device(user_id, f"dev-{n}")
                tmp_db.list_trusted_devices(user_id)
        except Exception as exc:  # surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for user_id in users:
        assert tmp_db.get_user(user_id).mfa_secret == "JBSWY3DPEHPK3PXP"
        assert len(tmp_db.list_trusted_devices(user_id)) == 25
