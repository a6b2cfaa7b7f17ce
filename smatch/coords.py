"""Spreadsheet coordinates and column resolution.

Column references arrive either as header names ("Kota", "Total") or as
spreadsheet coordinates: a bare column ("D", "aa") or a cell ("D4"). A token
that parses as a coordinate is always treated as one, so a header named
"ID" can only be reached by its column letter.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from openpyxl.utils import column_index_from_string, get_column_letter

from .errors import ColumnNotFound

_COLUMN_RE = re.compile(r"^([A-Z]{1,3})$")
_CELL_RE = re.compile(r"^([A-Z]{1,3})(\d+)$")


@dataclass(frozen=True, order=True)
class RowAddress:
    """Absolute 1-based row number on the physical sheet."""

    number: int

    def __post_init__(self) -> None:
        if self.number < 1:
            raise ValueError(f"Row numbers are 1-based, got {self.number}")

    @classmethod
    def from_offset(cls, start: "RowAddress", offset: int) -> "RowAddress":
        """Address of the ``offset``-th (0-based) row of a block beginning at ``start``."""
        return cls(start.number + offset)

    def offset_from(self, start: "RowAddress") -> int:
        return self.number - start.number

    def next(self) -> "RowAddress":
        return RowAddress(self.number + 1)

    def __int__(self) -> int:
        return self.number

    def __str__(self) -> str:
        return str(self.number)


@dataclass(frozen=True)
class CellRef:
    column: str  # upper-case letters
    row: Optional[int] = None  # None for a bare column


def _clean(token: str) -> str:
    return (token or "").strip().upper()


def parse_cell_coordinate(token: str) -> Optional[CellRef]:
    """Parse "A2", "aa10"... into a CellRef; None when the token is not a cell."""
    m = _CELL_RE.match(_clean(token))
    if not m:
        return None
    row = int(m.group(2))
    if row < 1:
        return None
    return CellRef(column=m.group(1), row=row)


def is_coordinate(token: str) -> bool:
    """True for 1-3 letters optionally followed by a row number >= 1."""
    t = _clean(token)
    if not t:
        return False
    if parse_cell_coordinate(t) is not None:
        return True
    return bool(_COLUMN_RE.match(t))


def parse_coordinate(token: str) -> Optional[CellRef]:
    """Parse either a bare column or a cell reference."""
    cell = parse_cell_coordinate(token)
    if cell is not None:
        return cell
    t = _clean(token)
    if _COLUMN_RE.match(t):
        return CellRef(column=t)
    return None


def column_letters(token: str) -> str:
    ref = parse_coordinate(token)
    if ref is None:
        raise ValueError(f"Invalid coordinate format: {token}")
    return ref.column


def coordinate_row(token: str) -> Optional[int]:
    """Row part of a cell coordinate, None for a bare column."""
    ref = parse_coordinate(token)
    if ref is None:
        raise ValueError(f"Invalid coordinate format: {token}")
    return ref.row


def column_to_index(letters: str) -> int:
    """Convert column letters to a 0-based index (A -> 0, Z -> 25, AA -> 26)."""
    return column_index_from_string(_clean(letters)) - 1


def index_to_column(index: int) -> str:
    """Convert a 0-based index back to column letters (0 -> A, 26 -> AA)."""
    if index < 0:
        raise ValueError(f"Invalid column index {index}")
    return get_column_letter(index + 1)


def column_range(headers: Sequence[str]) -> str:
    if not headers:
        return "no columns"
    return f"A-{index_to_column(len(headers) - 1)}"


@dataclass(frozen=True)
class Found:
    header: str
    index: int


@dataclass(frozen=True)
class NotFound:
    token: str
    index: Optional[int] = None  # set when the token was a coordinate


Resolution = Union[Found, NotFound]


def resolve_column(token: str, headers: Sequence[str]) -> Resolution:
    if not token or not token.strip():
        return NotFound(token or "")
    if is_coordinate(token):
        index = column_to_index(column_letters(token))
        if 0 <= index < len(headers):
            return Found(headers[index], index)
        return NotFound(token, index)
    wanted = token.strip().casefold()
    for i, h in enumerate(headers):
        if str(h).casefold() == wanted:
            return Found(str(h), i)
    return NotFound(token)


def resolve_column_identifier(token: str, headers: Sequence[str]) -> Optional[str]:
    """Header name for a coordinate or (case-insensitive) header token, or None."""
    res = resolve_column(token, headers)
    return res.header if isinstance(res, Found) else None


def validate_column_exists(
    token: str,
    headers: Sequence[str],
    context: str,
    ref: Optional[str] = None,
) -> Found:
    """Resolve ``token`` or raise ColumnNotFound with the header list for diagnosis."""
    res = resolve_column(token, headers)
    if isinstance(res, Found):
        return res
    raise ColumnNotFound(
        token,
        headers,
        context=context,
        index=res.index,
        column_range=column_range(headers) if res.index is not None else None,
        ref=ref,
    )
