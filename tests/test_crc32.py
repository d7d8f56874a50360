"""
Tests for app/crc32.py — table-driven CRC-32.

``zlib.crc32`` implements the same polynomial and serves as the reference.
"""

from __future__ import annotations

import zlib

import pytest

from app.crc32 import _TABLE, crc32


class TestCrc32:
    """Checksums agree with zlib and the published check value."""

    def test_empty_buffer_is_zero(self) -> None:
        assert crc32(b"") == 0

    def test_check_value(self) -> None:
        """The standard check input "123456789" yields 0xCBF43926."""
        assert crc32(b"123456789") == 0xCBF43926

    @pytest.mark.parametrize(
        "data",
        [
            b"a",
            b"The quick brown fox jumps over the lazy dog",
            bytes(range(256)),
            "id,name\n1,Zoë\n".encode("utf-8"),
            b"\x00" * 1000,
        ],
    )
    def test_matches_zlib(self, data: bytes) -> None:
        assert crc32(data) == zlib.crc32(data)

    def test_accepts_bytearray_and_memoryview(self) -> None:
        data = b"growth chart"
        assert crc32(bytearray(data)) == crc32(data)
        assert crc32(memoryview(data)) == crc32(data)

    def test_result_is_unsigned_32_bit(self) -> None:
        value = crc32(b"\xff" * 64)
        assert 0 <= value <= 0xFFFFFFFF


class TestTable:
    """The precomputed lookup table."""

    def test_has_256_entries(self) -> None:
        assert len(_TABLE) == 256

    def test_known_entries(self) -> None:
        assert _TABLE[0] == 0
        assert _TABLE[1] == 0x77073096
        assert _TABLE[255] == 0x2D02EF8D
