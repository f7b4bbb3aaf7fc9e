"""Two-column CSV decoder.

The upstream sheet is published as ``key,value`` rows under a header row.
This is deliberately not a full CSV parser: quoted commas are not supported
because the sheet never produces them.  Malformed rows are skipped so a
half-edited sheet yields a partial mapping rather than an error.
"""

from __future__ import annotations

import re

from feedrouter.exceptions import DecodeError

_LINE_SPLIT = re.compile(r"\r?\n")


def _strip_cell(cell: str) -> str:
    """Drop one leading and one trailing double quote, then whitespace."""
    if cell.startswith('"'):
        cell = cell[1:]
    if cell.endswith('"'):
        cell = cell[:-1]
    return cell.strip()


def decode_key_value_csv(text: str) -> dict[str, str]:
    """Decode *text* into a ``{key: value}`` mapping.

    The first line is treated as a header and skipped.  Lines without a
    comma and rows with an empty key are ignored; later duplicates win.

    Raises
    ------
    DecodeError
        If *text* is not a string.
    """
    if not isinstance(text, str):
        raise DecodeError(f"Expected source text, got {type(text).__name__}")

    lines = _LINE_SPLIT.split(text.strip())
    out: dict[str, str] = {}
    for line in lines[1:]:
        key_cell, sep, value_cell = line.partition(",")
        if not sep:
            continue
        key = _strip_cell(key_cell)
        if key:
            out[key] = _strip_cell(value_cell)
    return out
