"""Tests for qr.provisioning."""

import urllib.parse

import pytest

from core.hotp import Algorithm
from core.totp import TotpConfig
from qr.provisioning import build_otpauth_uri, render_qr_svg, render_qr_text


def _query(uri: str) -> dict:
    return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(uri).query))


def test_build_default_uri() -> None:
    uri = build_otpauth_uri("JBSWY3DPEHPK3PXP", "alice@apex.ca", issuer="Apex Bank")
    parsed = urllib.parse.urlparse(uri)
    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert urllib.parse.unquote(parsed.path.lstrip("/")) == "Apex Bank:alice@apex.ca"
    assert _query(uri) == {
        "secret": "JBSWY3DPEHPK3PXP",
        "issuer": "Apex Bank",
        "algorithm": "SHA1",
        "digits": "6",
        "period": "30",
    }


def test_build_normalises_secret() -> None:
    uri = build_otpauth_uri("jbsw y3dp ehpk 3pxp====", "alice")
    assert _query(uri)["secret"] == "JBSWY3DPEHPK3PXP"


def test_build_without_issuer() -> None:
    uri = build_otpauth_uri("JBSWY3DPEHPK3PXP", "alice")
    assert uri.startswith("otpauth://totp/alice?")
    assert "issuer" not in _query(uri)


def test_build_advertises_config() -> None:
    config = TotpConfig(step_seconds=60, digits=8, algorithm=Algorithm.SHA256)
    query = _query(build_otpauth_uri("JBSWY3DPEHPK3PXP", "alice", config=config))
    assert (query["algorithm"], query["digits"], query["period"]) == ("SHA256", "8", "60")


@pytest.mark.parametrize("secret,account", [("", "alice"), ("   ", "alice"), ("JBSWY3DPEHPK3PXP", "")])
def test_build_rejects_empty_fields(secret: str, account: str) -> None:
    with pytest.raises(ValueError):
        build_otpauth_uri(secret, account)


def test_render_svg() -> None:
    svg = render_qr_svg(build_otpauth_uri("JBSWY3DPEHPK3PXP", "alice"))
    assert b"<svg" in svg


def test_render_text() -> None:
    text = render_qr_text(build_otpauth_uri("JBSWY3DPEHPK3PXP", "alice"))
    lines = text.splitlines()
    assert len(lines) > 10
    assert len({len(line) for line in lines}) == 1
    assert "█" in text
