"""
TOTP code generation (RFC 4226 / RFC 6238).

Implements HMAC-SHA1 dynamic truncation over a 30-second timestep counter.
Compatible with Google Authenticator, Authy, and other TOTP apps.

All functions here are pure; they are safe to call from any thread.
"""
import hashlib
import hmac
import struct
from typing import Iterable, Optional, Union

import pyotp
from pydantic import SecretStr

from .base32 import Base32DecodeError, decode

CODE_DIGITS = 6

Secret = Union[SecretStr, str]


def reveal_secret(secret: Secret) -> str:
    if isinstance(secret, SecretStr):
        return secret.get_secret_value()
    return secret


def generate_totp_secret() -> SecretStr:
    """
    Generate a new TOTP secret for MFA enrollment.

    Returns:
        Base32-encoded secret (32 characters, 160 bits), wrapped so it does
        not leak through repr() or logging.
    """
    return SecretStr(pyotp.random_base32().upper())


def decode_secret(secret: Secret) -> bytes:
    """
    Decode a base32 TOTP secret into HMAC key bytes.

    Raises:
        Base32DecodeError: If the secret is not valid base32, or holds too
            few symbols to make a single key byte.
    """
    key = decode(reveal_secret(secret))
    if not key:
        raise Base32DecodeError("TOTP secret decodes to an empty key")
    return key


def compute_code(secret: Secret, timestep: int) -> str:
    """
    Compute the 6-digit code for a secret at a given timestep.

    Args:
        secret: Base32-encoded TOTP secret.
        timestep: Counter value (``floor(unix_time / 30)``).

    Returns:
        Zero-padded 6-digit code.

    Raises:
        Base32DecodeError: If the secret is not valid base32 or is empty.
        ValueError: If the timestep is negative.
    """
    if timestep < 0:
        raise ValueError(f"timestep must not be negative, got {timestep}")
    key = decode_secret(secret)
    message = struct.pack(">Q", timestep)

    digest = hmac.new(key, message, hashlib.sha1).digest()

    offset = digest[19] & 0x0F
    code = (
        ((digest[offset] & 0x7F) << 24)
        | (digest[offset + 1] << 16)
        | (digest[offset + 2] << 8)
        | digest[offset + 3]
    )

    code = code % (10 ** CODE_DIGITS)
    return str(code).zfill(CODE_DIGITS)


def codes_match(submitted: str, expected: str) -> bool:
    """Constant-time comparison of a submitted code against an expected code."""
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


def find_valid_timestep(
    secret: Secret,
    code: str,
    timesteps: Iterable[int],
) -> Optional[int]:
    """
    Find the timestep at which a submitted code is a valid response.

    Timesteps are checked in ascending order and every candidate is computed,
    so timing does not depend on where (or whether) a match occurs.

    Args:
        secret: Base32-encoded TOTP secret.
        code: Code entered by the user (already trimmed).
        timesteps: Candidate timesteps.

    Returns:
        The matching timestep, or None if the code matches none of them.
    """
    matched = None
    for timestep in sorted(timesteps):
        # Counters are unsigned 64-bit; the window around step 0 reaches -1.
        if timestep < 0:
            continue
        if codes_match(code, compute_code(secret, timestep)) and matched is None:
            matched = timestep
    return matched
