"""
app/csv_codec.py
-----------------------------------------------------------------------------
Minimal CSV encoder and decoder for the export/import archive.

The archive carries exactly two self-generated CSV files, so the codec only
needs a small RFC 4180 subset:

Encoding
~~~~~~~~
- First line is the comma-joined column names.
- A field is wrapped in double quotes (with inner quotes doubled) only when
  it contains a comma, a double quote, or a line break.
- ``None`` becomes an empty field; numbers, dates and datetimes use a fixed,
  locale-independent rendering (see ``format_value``).
- The text always ends with a newline.

Decoding
~~~~~~~~
A single pass over the characters with an explicit "inside quotes" flag.
Malformed quoting is never rejected: an unterminated quote simply swallows
the rest of the input into the current field.  The archive is written by
``encode_csv`` and therefore well-formed by construction, so leniency costs
nothing and keeps hand-edited files importable.

Exports
-------
encode_csv(columns, records) -> str
decode_csv(text) -> list[list[str]]
header_index(header_row) -> dict[str, int]
format_value(value) -> str
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

_NEEDS_QUOTING = (",", '"', "\n", "\r")


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------


def format_value(value: Any) -> str:
    """
    Render a scalar as CSV field text (before escaping).

    - ``None`` → ``""``
    - ``datetime`` → ISO-8601 UTC with milliseconds and ``Z``
      (naive values are taken to be UTC already), e.g.
      ``2024-03-01T08:15:00.000Z``
    - ``date`` → ``YYYY-MM-DD``
    - ``float`` → shortest round-tripping repr; integral values drop ``.0``
    - ``Enum`` → its ``value``
    - anything else → ``str(value)``
    """
    if value is None:
        return ""
    # datetime is a subclass of date, so it must be checked first.
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        stamp = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
        return stamp.replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def escape_field(text: str) -> str:
    """Quote ``text`` if it contains a delimiter, quote, or line break."""
    if any(ch in text for ch in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


def encode_csv(columns: Sequence[str], records: Iterable[Sequence[Any]]) -> str:
    """
    Serialise ``records`` under a header of ``columns``.

    Parameters
    ----------
    columns : Column names, written verbatim as the first line.
    records : Rows of scalar values in column order.

    Returns
    -------
    str : CSV text terminated by ``\\n``.  With no records the result is
          just the header line and its newline.
    """
    lines = [",".join(columns)]
    for record in records:
        lines.append(",".join(escape_field(format_value(v)) for v in record))
    return "\n".join(lines) + "\n"


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


def decode_csv(text: str) -> list[list[str]]:
    """
    Parse CSV text into rows of string fields.

    ``\\n``, ``\\r\\n`` and a lone ``\\r`` all terminate a record outside
    quotes.  Rows made of a single empty field (blank lines) are dropped.
    Content after the last line break is kept as a final row.
    """
    rows: list[list[str]] = []
    row: list[str] = []
    field: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if in_quotes:
            if ch == '"':
                if i + 1 < n and text[i + 1] == '"':
                    field.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                field.append(ch)
            i += 1
            continue

        if ch == '"':
            in_quotes = True
        elif ch == ",":
            row.append("".join(field))
            field = []
        elif ch in ("\n", "\r"):
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            row.append("".join(field))
            rows.append(row)
            row = []
            field = []
        else:
            field.append(ch)
        i += 1

    if field or row:
        row.append("".join(field))
        rows.append(row)

    return [r for r in rows if not (len(r) == 1 and r[0] == "")]


def header_index(header_row: Sequence[str]) -> dict[str, int]:
    """
    Map each column name in ``header_row`` to its position.

    Names are whitespace-trimmed and a leading UTF-8 BOM is removed, so a
    file re-saved by a spreadsheet still resolves.  If a name repeats, the
    first occurrence wins.
    """
    index: dict[str, int] = {}
    for position, name in enumerate(header_row):
        key = name.lstrip("\ufeff").strip()
        index.setdefault(key, position)
    return index
