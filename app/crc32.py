"""
app/crc32.py
-----------------------------------------------------------------------------
Table-driven CRC-32 for the store-only ZIP writer and reader.

Uses the reflected IEEE 802.3 polynomial ``0xEDB88320`` with an initial
register of ``0xFFFFFFFF`` and a final bitwise complement, which is the
checksum every ZIP tool expects in the local header and central directory.

The 256-entry lookup table is built once at import time and shared by every
call.
"""

from __future__ import annotations

_POLYNOMIAL: int = 0xEDB88320


def _build_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        c = byte
        for _ in range(8):
            c = (c >> 1) ^ _POLYNOMIAL if c & 1 else c >> 1
        table.append(c)
    return tuple(table)


_TABLE: tuple[int, ...] = _build_table()


def crc32(data: bytes) -> int:
    """
    Return the CRC-32 of ``data`` as an unsigned 32-bit integer.

    Parameters
    ----------
    data : Any bytes-like object (``bytes``, ``bytearray``, ``memoryview``).

    Returns
    -------
    int : Checksum in the range ``0 .. 0xFFFFFFFF``.  The empty buffer
          yields ``0``.
    """
    c = 0xFFFFFFFF
    table = _TABLE
    for b in bytes(data):
        c = (c >> 8) ^ table[(c ^ b) & 0xFF]
    return c ^ 0xFFFFFFFF
