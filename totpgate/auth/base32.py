"""
Base32 codec for TOTP shared secrets (RFC 4648 alphabet, no padding).

Authenticator apps display secrets as base32 text; the HMAC key is the decoded
byte string. Decoding is strict: any symbol outside ``A-Z2-7`` is rejected
rather than skipped, so a mistyped secret never turns into a shorter key.
"""
from typing import Dict

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

_SYMBOL_VALUES: Dict[str, int] = {symbol: index for index, symbol in enumerate(ALPHABET)}


class Base32DecodeError(ValueError):
    """Raised when a secret contains a symbol outside the base32 alphabet."""


def decode(value: str) -> bytes:
    """
    Decode a base32 string into raw bytes.

    Input is uppercased first. Bits are accumulated five at a time and emitted
    eight at a time; trailing bits that do not complete a byte are dropped.
    Padding characters are not accepted.

    Args:
        value: Base32 text (case-insensitive).

    Returns:
        Decoded bytes.

    Raises:
        Base32DecodeError: If a symbol is not part of the alphabet.
    """
    out = bytearray()
    acc = 0
    bits = 0

    for position, symbol in enumerate(value.upper()):
        symbol_value = _SYMBOL_VALUES.get(symbol)
        if symbol_value is None:
            raise Base32DecodeError(
                f"Invalid base32 symbol {symbol!r} at position {position}"
            )

        acc = ((acc << 5) | symbol_value) & 0xFFFF
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((acc >> bits) & 0xFF)

    return bytes(out)


def encode(data: bytes) -> str:
    """
    Encode bytes as unpadded base32 text.

    The final symbol is zero-filled on the right when the bit count is not a
    multiple of five, so ``decode(encode(data)) == data`` for any input.
    """
    symbols = []
    acc = 0
    bits = 0

    for byte in data:
        acc = ((acc << 8) | byte) & 0xFFFF
        bits += 8
        while bits >= 5:
            bits -= 5
            symbols.append(ALPHABET[(acc >> bits) & 0x1F])

    if bits:
        symbols.append(ALPHABET[(acc << (5 - bits)) & 0x1F])

    return "".join(symbols)
