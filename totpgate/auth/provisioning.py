"""
Provisioning helpers for authenticator apps.

Builds the otpauth:// URI shown during enrollment and renders it as a QR
code that Google Authenticator, Authy and similar apps can scan.
"""
import base64
import io
import os
from typing import Optional

import pyotp
import qrcode
from qrcode.constants import ERROR_CORRECT_M

from .totp import Secret, reveal_secret

# Pixels per QR module and quiet-zone width in modules (4 is the minimum scanners expect)
QR_BOX_SIZE = 8
QR_BORDER = 4

PNG_DATA_URI_PREFIX = "data:image/png;base64,"


def get_issuer() -> str:
    """Issuer label shown in authenticator apps."""
    return os.getenv("TOTPGATE_ISSUER", "totpgate")


def get_totp_provisioning_uri(
    secret: Secret,
    account_name: str,
    issuer: Optional[str] = None,
) -> str:
    """
    Generate a provisioning URI for TOTP apps.

    Args:
        secret: Base32-encoded TOTP secret.
        account_name: Account label (username or email).
        issuer: Application name; defaults to ``TOTPGATE_ISSUER``.

    Returns:
        otpauth://totp/... URI string.
    """
    totp = pyotp.TOTP(reveal_secret(secret))
    return totp.provisioning_uri(name=account_name, issuer_name=issuer or get_issuer())


def generate_qr_code(uri: str, box_size: int = QR_BOX_SIZE) -> bytes:
    """Render ``uri`` as a PNG QR code; the symbol version grows to fit the URI."""
    symbol = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=QR_BORDER)
    symbol.add_data(uri)
    symbol.make(fit=True)

    with io.BytesIO() as png:
        symbol.make_image().save(png, format="PNG")
        return png.getvalue()


def generate_qr_code_base64(uri: str) -> str:
    """Same QR code as a data URI for an <img> tag."""
    return PNG_DATA_URI_PREFIX + base64.b64encode(generate_qr_code(uri)).decode("ascii")
