"""Tests for the base32 secret codec."""

import base64
import os

import pytest

from totpgate.auth.base32 import Base32DecodeError, decode, encode


class TestDecode:
    """Test strict base32 decoding."""

    def test_decode_rfc4648_vector(self):
        """Test RFC 4648 vector without padding."""
        assert decode("MZXW6YTBOI") == b"foobar"

    def test_decode_is_case_insensitive(self):
        assert decode("mzxw6ytboi") == b"foobar"

    def test_decode_drops_incomplete_trailing_bits(self):
        """Ten bits decode to one byte; the remaining two bits are dropped."""
        assert decode("MZ") == b"f"

    def test_decode_empty(self):
        assert decode("") == b""

    @pytest.mark.parametrize("value", ["MZXW1", "MZXW6YTBOI======", "MZ XW", "MZXW8"])
    def test_decode_rejects_symbols_outside_alphabet(self, value):
        """Digits 0/1/8/9, padding and whitespace are not base32 symbols."""
        with pytest.raises(Base32DecodeError):
            decode(value)

    def test_decode_error_is_value_error(self):
        with pytest.raises(ValueError, match="position 4"):
            decode("MZXW!")


class TestEncode:
    """Test unpadded base32 encoding."""

    def test_encode_matches_stdlib_without_padding(self):
        data = b"12345678901234567890"
        assert encode(data) == base64.b32encode(data).decode("ascii").rstrip("=")

    def test_round_trip_for_every_tail_length(self):
        """Cover every remainder of bits modulo five."""
        for length in range(0, 11):
            data = os.urandom(length)
            assert decode(encode(data)) == data
