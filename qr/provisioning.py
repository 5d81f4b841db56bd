"""
Provisioning helpers: otpauth:// key URIs and their QR codes.

Reference: https://github.com/google/google-authenticator/wiki/Key-Uri-Format
"""

import io
import urllib.parse

import qrcode
import qrcode.image.svg

from core.totp import DEFAULT_CONFIG, TotpConfig
from core.utils import sanitise_label, strip_whitespace


def build_otpauth_uri(
    secret: str,
    account_name: str,
    issuer: str = "",
    config: TotpConfig = DEFAULT_CONFIG,
) -> str:
    """
    Build the ``otpauth://totp/...`` URI an authenticator app enrols from.

    Args:
        secret:       Base32 shared secret.
        account_name: Label shown in the app (usually the user's e-mail).
        issuer:       Issuer shown in the app.
        config:       Advertised period, digits and algorithm.

    Returns:
        Key URI string.

    Raises:
        ValueError: If the secret or account name is empty.
    """
    secret = strip_whitespace(secret).upper().replace("=", "")
    if not secret:
        raise ValueError("Missing secret for otpauth URI.")
    account_name = sanitise_label(account_name)
    if not account_name:
        raise ValueError("Missing account name for otpauth URI.")
    issuer = sanitise_label(issuer)

    label = f"{issuer}:{account_name}" if issuer else account_name
    params: dict = {"secret": secret}
    if issuer:
        params["issuer"] = issuer
    params["algorithm"] = config.algorithm.value
    params["digits"] = str(config.digits)
    params["period"] = str(config.step_seconds)

    query = urllib.parse.urlencode(params, quote_via=urllib.parse.quote)
    label_encoded = urllib.parse.quote(label, safe="")
    return f"otpauth://totp/{label_encoded}?{query}"


def _make_qr(uri: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)
    return qr


def render_qr_svg(uri: str) -> bytes:
    """Render *uri* as an SVG QR code."""
    img = _make_qr(uri).make_image(image_factory=qrcode.image.svg.SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def render_qr_text(uri: str) -> str:
    """
    Render *uri* as a QR code made of block characters for a terminal.

    Two module rows are packed into each text line using half blocks.
    """
    matrix = _make_qr(uri).get_matrix()
    if len(matrix) % 2:
        matrix = matrix + [[False] * len(matrix[0])]
    lines = []
    for r in range(0, len(matrix), 2):
        top, bottom = matrix[r], matrix[r + 1]
        line = []
        for upper, lower in zip(top, bottom):
            if upper and lower:
                line.append("█")
            elif upper:
                line.append("▀")
            elif lower:
                line.append("▄")
            else:
                line.append(" ")
        lines.append("".join(line))
    return "\n".join(lines)
