"""
Apex MFA – command-line entry point.

Usage
-----
    APEX_MFA_KEY=... python main.py setup alice --account alice@apex.ca
    python main.py confirm alice 123456 --device laptop

Or, if installed as a package:
    apex-mfa <command> ...
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from core.crypto import generate_salt
from core.totp import compute_code, remaining_seconds
from core.utils import format_otp
from mfa.config import MfaSettings
from mfa.service import MfaResult, MfaService
from qr.provisioning import render_qr_text
from storage.database import MfaDatabase
from storage.encryption import FieldEncryptor

# ── Logging setup ─────────────────────────────────────────────────────────────

logger = logging.getLogger("apex_mfa")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ── Bootstrap ─────────────────────────────────────────────────────────────────

def _build_encryptor(db: MfaDatabase, server_secret: str) -> FieldEncryptor:
    """Derive the storage key, creating the salt on first run."""
    salt = db.get_salt()
    if salt is None:
        salt = generate_salt()
        db.set_salt(salt)
        logger.info("Initialised new MFA store.")
    return FieldEncryptor.from_server_secret(server_secret, salt)


def _open_database(settings: MfaSettings) -> MfaDatabase:
    if not settings.server_secret:
        raise SystemExit("APEX_MFA_KEY must be set.")
    db = MfaDatabase(db_path=settings.db_path)
    try:
        db.set_encryptor(_build_encryptor(db, settings.server_secret))
    except Exception:
        db.close()
        raise
    return db


def _report(result: MfaResult) -> int:
    if result.ok:
        return 0
    print(result.message, file=sys.stderr)
    return 1


# ── Commands ──────────────────────────────────────────────────────────────────

def _cmd_setup(service: MfaService, args: argparse.Namespace) -> int:
    result = service.start_setup(args.user)
    if not result.ok:
        return _report(result)
    uri = service.provisioning_uri(args.user, args.account or args.user)
    print(f"Secret: {result.secret}")
    print(f"URI:    {uri}")
    print(render_qr_text(uri))
    return 0


def _cmd_confirm(service: MfaService, args: argparse.Namespace) -> int:
    return _report(service.confirm_setup(args.user, args.code, device_id=args.device))


def _cmd_verify(service: MfaService, args: argparse.Namespace) -> int:
    if not service.requires_challenge(args.user, args.device):
        print("No challenge required.")
        return 0
    return _report(
        service.verify_challenge(
            args.user, args.code, remember=args.remember, device_id=args.device
        )
    )


def _cmd_disable(service: MfaService, args: argparse.Namespace) -> int:
    return _report(service.disable(args.user))


def _cmd_devices(service: MfaService, args: argparse.Namespace) -> int:
    for device in service.list_trusted_devices(args.user):
        print(f"{device.id}\t{device.device_id}\t{device.last_seen_at.isoformat()}\t{device.label}")
    return 0


def _cmd_forget(service: MfaService, args: argparse.Namespace) -> int:
    return _report(service.remove_trusted_device(args.user, args.id))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="apex-mfa", description="Apex Bank MFA tool")
    parser.add_argument("--db", type=Path, help="SQLite store (overrides APEX_MFA_DB)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("setup", help="generate a new secret for a user")
    p.add_argument("user")
    p.add_argument("--account", help="label shown in the authenticator app")
    p.set_defaults(func=_cmd_setup)

    p = sub.add_parser("confirm", help="enable MFA with a first code")
    p.add_argument("user")
    p.add_argument("code")
    p.add_argument("--device")
    p.set_defaults(func=_cmd_confirm)

    p = sub.add_parser("verify", help="answer a sign-in challenge")
    p.add_argument("user")
    p.add_argument("code")
    p.add_argument("--device")
    p.add_argument("--remember", action="store_true")
    p.set_defaults(func=_cmd_verify)

    p = sub.add_parser("disable", help="turn MFA off and forget devices")
    p.add_argument("user")
    p.set_defaults(func=_cmd_disable)

    p = sub.add_parser("devices", help="list trusted devices")
    p.add_argument("user")
    p.set_defaults(func=_cmd_devices)

    p = sub.add_parser("forget", help="remove one trusted device")
    p.add_argument("user")
    p.add_argument("id")
    p.set_defaults(func=_cmd_forget)

    p = sub.add_parser("code", help="print the current code for a secret")
    p.add_argument("secret")
    p.set_defaults(func=None)

    return parser


# ── Main ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    settings = MfaSettings.from_env()

    if args.command == "code":
        code = compute_code(args.secret, config=settings.totp)
        print(f"{format_otp(code)}  ({remaining_seconds(settings.totp)}s)")
        return 0

    if args.db is not None:
        settings = replace(settings, db_path=args.db)

    db = _open_database(settings)
    try:
        return args.func(MfaService(db, settings), args)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
