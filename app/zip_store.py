"""
app/zip_store.py
-----------------------------------------------------------------------------
Store-only ZIP writer and reader for the export/import archive.

Why not ``zipfile``?
--------------------
The archive format is fixed and tiny (two CSV members, no compression), and
the import side must reject anything it does not fully understand rather
than hand back bytes it cannot vouch for.  Writing the three record types by
hand keeps every byte of the format visible and testable, while ``zipfile``
remains the independent oracle in the test suite.

Sections
--------
1. **Record layouts** — ``struct`` formats and signatures for the local file
   header, central directory header, and end-of-central-directory record.
2. **Writer** — ``build_store_zip`` assembles named byte buffers into one
   archive, tracking offsets incrementally.
3. **Reader** — ``read_store_zip`` finds the end record, walks the central
   directory, and slices each entry out of its local header.

Limits
------
No Zip64: archives are bounded by the classic 16/32-bit fields, and the end
record is searched for only within the last 64 KB + 22 bytes (the largest
possible archive comment).
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterable
from datetime import datetime, timezone

from app.crc32 import crc32
from app.errors import InvalidArchive, UnsupportedEntry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Section 1: Record layouts
# ---------------------------------------------------------------------------

LOCAL_HEADER_SIGNATURE: int = 0x04034B50
CENTRAL_HEADER_SIGNATURE: int = 0x02014B50
END_RECORD_SIGNATURE: int = 0x06054B50

# signature, version needed, flags, method, mod time, mod date, crc,
# compressed size, uncompressed size, name length, extra length
_LOCAL_HEADER = struct.Struct("<IHHHHHIIIHH")

# signature, version made by, version needed, flags, method, mod time,
# mod date, crc, compressed size, uncompressed size, name length,
# extra length, comment length, disk start, internal attrs, external attrs,
# local header offset
_CENTRAL_HEADER = struct.Struct("<IHHHHHHIIIHHHHHII")

# signature, disk number, central directory disk, entries on this disk,
# total entries, central directory size, central directory offset,
# comment length
_END_RECORD = struct.Struct("<IHHHHIIH")

_VERSION: int = 20
_FLAG_UTF8: int = 0x0800
_METHOD_STORE: int = 0

_MAX_ENTRIES: int = 0xFFFF
_MAX_SIZE: int = 0xFFFFFFFF
_MAX_COMMENT: int = 0xFFFF


def _dos_datetime(moment: datetime) -> tuple[int, int]:
    """Pack ``moment`` into MS-DOS (time, date) words with 2-second precision."""
    year = max(1980, moment.year) - 1980
    dos_time = (moment.hour << 11) | (moment.minute << 5) | (moment.second // 2)
    dos_date = (year << 9) | (moment.month << 5) | moment.day
    return dos_time, dos_date


# ---------------------------------------------------------------------------
# Section 2: Writer
# ---------------------------------------------------------------------------


def build_store_zip(
    entries: Iterable[tuple[str, bytes]],
    *,
    timestamp: datetime | None = None,
) -> bytes:
    """
    Assemble ``entries`` into an uncompressed ZIP archive.

    Every entry gets the same modification time, taken from ``timestamp``
    (UTC now by default).  Names are encoded as UTF-8 and flagged as such
    with general-purpose bit 11.

    Parameters
    ----------
    entries   : Ordered ``(name, data)`` pairs.  Order is preserved in both
                the local section and the central directory.
    timestamp : Optional modification time shared by all entries.

    Returns
    -------
    bytes : The complete archive.

    Raises
    ------
    ValueError : If the entry count, an entry name, an entry size or the
                 archive itself would overflow the non-Zip64 fields.
    """
    moment = timestamp or datetime.now(timezone.utc)
    dos_time, dos_date = _dos_datetime(moment)

    chunks: list[bytes] = []
    directory: list[tuple[bytes, int, int, int]] = []  # name, crc, size, offset
    offset = 0

    for name, data in entries:
        name_bytes = name.encode("utf-8")
        data = bytes(data)
        size = len(data)
        if len(name_bytes) > 0xFFFF:
            raise ValueError(f"Zip entry name is too long: {name[:40]!r}…")
        if size > _MAX_SIZE:
            raise ValueError(f"Zip entry '{name}' is too large for a non-Zip64 archive.")

        checksum = crc32(data)
        header = _LOCAL_HEADER.pack(
            LOCAL_HEADER_SIGNATURE,
            _VERSION,
            _FLAG_UTF8,
            _METHOD_STORE,
            dos_time,
            dos_date,
            checksum,
            size,
            size,
            len(name_bytes),
            0,
        )
        chunks.extend((header, name_bytes, data))
        directory.append((name_bytes, checksum, size, offset))
        offset += len(header) + len(name_bytes) + size

    if len(directory) > _MAX_ENTRIES:
        raise ValueError(f"Zip archive cannot hold {len(directory)} entries without Zip64.")

    central_offset = offset
    central_size = 0
    for name_bytes, checksum, size, local_offset in directory:
        record = _CENTRAL_HEADER.pack(
            CENTRAL_HEADER_SIGNATURE,
            _VERSION,
            _VERSION,
            _FLAG_UTF8,
            _METHOD_STORE,
            dos_time,
            dos_date,
            checksum,
            size,
            size,
            len(name_bytes),
            0,
            0,
            0,
            0,
            0,
            local_offset,
        )
        chunks.extend((record, name_bytes))
        central_size += len(record) + len(name_bytes)

    if central_offset + central_size > _MAX_SIZE:
        raise ValueError("Zip archive is too large for a non-Zip64 archive.")

    chunks.append(
        _END_RECORD.pack(
            END_RECORD_SIGNATURE,
            0,
            0,
            len(directory),
            len(directory),
            central_size,
            central_offset,
            0,
        )
    )
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# Section 3: Reader
# ---------------------------------------------------------------------------


def _find_end_record(data: bytes) -> int:
    """Return the offset of the end-of-central-directory record."""
    signature = struct.pack("<I", END_RECORD_SIGNATURE)
    last = len(data) - _END_RECORD.size
    first = max(0, last - _MAX_COMMENT)
    for position in range(last, first - 1, -1):
        if data[position : position + 4] == signature:
            return position
    raise InvalidArchive("Invalid ZIP: end of central directory not found.")


def _decode_name(raw: bytes, flags: int) -> str:
    encoding = "utf-8" if flags & _FLAG_UTF8 else "cp437"
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as exc:
        raise InvalidArchive(f"Invalid ZIP: undecodable entry name: {exc}") from exc


def read_store_zip(data: bytes, *, verify_crc: bool = True) -> dict[str, bytes]:
    """
    Extract every entry of a store-only ZIP archive.

    Parameters
    ----------
    data       : Raw archive bytes.
    verify_crc : Recompute each entry's CRC-32 and compare it with the
                 central directory value.

    Returns
    -------
    dict[str, bytes] : Entry name → entry content, in central directory
                       order.  If a name repeats, the later entry wins.

    Raises
    ------
    InvalidArchive   : End record missing, a header signature mismatch,
                       truncated data, or a CRC mismatch.
    UnsupportedEntry : An entry is compressed (method other than 0).
    """
    data = bytes(data)
    end = _find_end_record(data)
    try:
        (_, _, _, _, _, central_size, central_offset, _) = _END_RECORD.unpack_from(data, end)
    except struct.error as exc:
        raise InvalidArchive(f"Invalid ZIP: truncated end record: {exc}") from exc

    listing: list[tuple[str, int, int, int]] = []  # name, crc, size, local offset
    position = central_offset
    central_end = central_offset + central_size
    try:
        while position < central_end:
            (
                signature,
                _made_by,
                _needed,
                flags,
                method,
                _time,
                _date,
                checksum,
                _compressed,
                size,
                name_len,
                extra_len,
                comment_len,
                _disk,
                _internal,
                _external,
                local_offset,
            ) = _CENTRAL_HEADER.unpack_from(data, position)
            if signature != CENTRAL_HEADER_SIGNATURE:
                raise InvalidArchive(
                    f"Invalid ZIP: bad central directory signature at offset {position}."
                )
            start = position + _CENTRAL_HEADER.size
            name = _decode_name(data[start : start + name_len], flags)
            if method != _METHOD_STORE:
                raise UnsupportedEntry(name, method)
            listing.append((name, checksum, size, local_offset))
            position = start + name_len + extra_len + comment_len
    except struct.error as exc:
        raise InvalidArchive(f"Invalid ZIP: truncated central directory: {exc}") from exc

    extracted: dict[str, bytes] = {}
    for name, checksum, size, local_offset in listing:
        try:
            header = _LOCAL_HEADER.unpack_from(data, local_offset)
        except struct.error as exc:
            raise InvalidArchive(f"Invalid ZIP: truncated local header for '{name}'.") from exc

        signature, _needed, _flags, method, *_rest, name_len, extra_len = header
        if signature != LOCAL_HEADER_SIGNATURE:
            raise InvalidArchive(f"Invalid ZIP: bad local header signature for '{name}'.")
        if method != _METHOD_STORE:
            raise UnsupportedEntry(name, method)

        start = local_offset + _LOCAL_HEADER.size + name_len + extra_len
        content = data[start : start + size]
        if len(content) != size:
            raise InvalidArchive(f"Invalid ZIP: entry '{name}' is truncated.")
        if verify_crc and crc32(content) != checksum:
            raise InvalidArchive(f"Invalid ZIP: CRC mismatch for '{name}'.")
        extracted[name] = content

    logger.debug("Read %d stored entries from a %d-byte archive", len(extracted), len(data))
    return extracted
