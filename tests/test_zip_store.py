"""
tests/test_zip_store.py
─────────────────────────────────────────────────────────────────────────────
Tests for app/zip_store.py — store-only ZIP writer and reader.

Python's ``zipfile`` is used as the independent reference in both
directions:

1. ``build_store_zip`` — archives must open cleanly in ``zipfile`` with the
   exact names, bytes, timestamps and flags written.
2. ``read_store_zip`` — archives produced by ``zipfile`` (stored) must read
   back exactly; compressed or damaged archives must be rejected.
"""

from __future__ import annotations

import io
import struct
import zipfile
import zlib
from datetime import datetime, timezone

import pytest

from app.errors import ArchiveError, InvalidArchive, UnsupportedEntry
from app.zip_store import build_store_zip, read_store_zip

ENTRIES = [
    ("babies.csv", b"id,name,gender,birthDate\n1,Ada,FEMALE,2023-01-15\n"),
    ("baby-data.csv", b"id,babyId,babyName,monthAge,heightCm,weightKg,createdAt\n"),
    ("empty.txt", b""),
]


def _zipfile_bytes(compression: int = zipfile.ZIP_STORED, comment: bytes = b"") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w", compression=compression) as zf:
        for name, data in ENTRIES:
            zf.writestr(name, data)
        zf.comment = comment
    return buffer.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# build_store_zip
# ─────────────────────────────────────────────────────────────────────────────


class TestBuildStoreZip:
    """Verify the writer against zipfile and the documented byte layout."""

    def test_zipfile_reads_every_entry(self) -> None:
        archive = build_store_zip(ENTRIES)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert zf.testzip() is None
            assert zf.namelist() == [name for name, _ in ENTRIES]
            for name, data in ENTRIES:
                assert zf.read(name) == data
                assert zf.getinfo(name).compress_type == zipfile.ZIP_STORED

    def test_empty_archive_is_just_the_end_record(self) -> None:
        archive = build_store_zip([])
        assert len(archive) == 22
        assert archive[:4] == b"PK\x05\x06"
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert zf.namelist() == []

    def test_local_header_layout(self) -> None:
        archive = build_store_zip([("a.csv", b"xyz")])
        (sig, version, flags, method, _t, _d, crc, csize, usize, name_len, extra_len) = (
            struct.unpack_from("<IHHHHHIIIHH", archive, 0)
        )
        assert sig == 0x04034B50
        assert version == 20
        assert flags == 0x0800
        assert method == 0
        assert csize == usize == 3
        assert name_len == len("a.csv")
        assert extra_len == 0
        assert archive[30:35] == b"a.csv"
        assert archive[35:38] == b"xyz"
        assert crc == zlib.crc32(b"xyz")

    def test_end_record_counts_and_offsets(self) -> None:
        archive = build_store_zip(ENTRIES)
        end = archive[-22:]
        sig, _disk, _cd_disk, here, total, cd_size, cd_offset, comment = struct.unpack(
            "<IHHHHIIH", end
        )
        assert sig == 0x06054B50
        assert here == total == len(ENTRIES)
        assert comment == 0
        assert cd_offset + cd_size == len(archive) - 22
        assert archive[cd_offset : cd_offset + 4] == b"PK\x01\x02"

    def test_central_offsets_point_at_local_headers(self) -> None:
        archive = build_store_zip(ENTRIES)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for info in zf.infolist():
                assert archive[info.header_offset : info.header_offset + 4] == b"PK\x03\x04"

    def test_utf8_names(self) -> None:
        archive = build_store_zip([("bébé.csv", b"1")])
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            info = zf.infolist()[0]
            assert info.filename == "bébé.csv"
            assert info.flag_bits & 0x0800

    def test_timestamp_is_stamped_on_entries(self) -> None:
        stamp = datetime(2024, 5, 17, 13, 45, 30, tzinfo=timezone.utc)
        archive = build_store_zip([("a.csv", b"1"), ("b.csv", b"2")], timestamp=stamp)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert {info.date_time for info in zf.infolist()} == {(2024, 5, 17, 13, 45, 30)}

    def test_years_before_1980_are_clamped(self) -> None:
        archive = build_store_zip([("a.csv", b"1")], timestamp=datetime(1970, 1, 1))
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert zf.infolist()[0].date_time[0] == 1980


# ─────────────────────────────────────────────────────────────────────────────
# read_store_zip — happy paths
# ─────────────────────────────────────────────────────────────────────────────


class TestReadStoreZip:
    """Verify the reader returns exactly what was stored."""

    @pytest.mark.parametrize("count", [0, 1, len(ENTRIES)])
    def test_round_trip(self, count: int) -> None:
        entries = ENTRIES[:count]
        assert read_store_zip(build_store_zip(entries)) == dict(entries)

    def test_reads_zipfile_stored_archive(self) -> None:
        assert read_store_zip(_zipfile_bytes()) == dict(ENTRIES)

    def test_finds_end_record_behind_a_comment(self) -> None:
        archive = _zipfile_bytes(comment=b"exported by hand" * 100)
        assert read_store_zip(archive) == dict(ENTRIES)

    def test_skips_local_extra_field(self) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, mode="w") as zf:
            info = zipfile.ZipInfo("notes.csv", date_time=(2024, 1, 1, 0, 0, 0))
            info.extra = struct.pack("<HH", 0x9999, 4) + b"abcd"
            zf.writestr(info, b"a,b\n1,2\n")
        assert read_store_zip(buffer.getvalue()) == {"notes.csv": b"a,b\n1,2\n"}

    def test_binary_content_preserved(self) -> None:
        blob = bytes(range(256)) * 4
        assert read_store_zip(build_store_zip([("blob.bin", blob)])) == {"blob.bin": blob}


# ─────────────────────────────────────────────────────────────────────────────
# read_store_zip — rejection
# ─────────────────────────────────────────────────────────────────────────────


class TestReadStoreZipErrors:
    """Damaged or unsupported archives must fail, never return partial data."""

    def test_compressed_entries_are_unsupported(self) -> None:
        with pytest.raises(UnsupportedEntry) as exc_info:
            read_store_zip(_zipfile_bytes(compression=zipfile.ZIP_DEFLATED))
        assert exc_info.value.method == zipfile.ZIP_DEFLATED

    def test_unsupported_is_an_archive_error(self) -> None:
        with pytest.raises(ArchiveError):
            read_store_zip(_zipfile_bytes(compression=zipfile.ZIP_DEFLATED))

    @pytest.mark.parametrize("data", [b"", b"PK", b"not a zip at all" * 10])
    def test_garbage_is_invalid(self, data: bytes) -> None:
        with pytest.raises(InvalidArchive):
            read_store_zip(data)

    def test_end_record_outside_scan_window(self) -> None:
        archive = build_store_zip(ENTRIES) + b"\x00" * 70_000
        with pytest.raises(InvalidArchive):
            read_store_zip(archive)

    def test_bad_central_signature(self) -> None:
        archive = bytearray(build_store_zip(ENTRIES))
        position = archive.find(b"PK\x01\x02")
        archive[position + 3] = 0x09
        with pytest.raises(InvalidArchive):
            read_store_zip(bytes(archive))

    def test_bad_local_signature(self) -> None:
        archive = bytearray(build_store_zip(ENTRIES))
        archive[3] = 0x09
        with pytest.raises(InvalidArchive):
            read_store_zip(bytes(archive))

    def test_truncated_archive(self) -> None:
        archive = build_store_zip(ENTRIES)
        # Keep the end record but drop the entry data it points into.
        damaged = archive[:20] + archive[-22:]
        with pytest.raises(InvalidArchive):
            read_store_zip(damaged)

    def test_crc_mismatch(self) -> None:
        archive = bytearray(build_store_zip([("a.csv", b"hello")]))
        position = archive.find(b"hello")
        archive[position] = ord("j")
        with pytest.raises(InvalidArchive):
            read_store_zip(bytes(archive))

    def test_crc_check_can_be_disabled(self) -> None:
        archive = bytearray(build_store_zip([("a.csv", b"hello")]))
        position = archive.find(b"hello")
        archive[position] = ord("j")
        assert read_store_zip(bytes(archive), verify_crc=False) == {"a.csv": b"jello"}
