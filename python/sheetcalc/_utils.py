"""A1-style cell addressing helpers.

Columns use bijective base 26 (no zero digit): ``A`` is column 0, ``Z`` is 25,
``AA`` is 26. Rows are 1-indexed in the identifier and 0-indexed everywhere
else in the package.
"""

from __future__ import annotations

import re

_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

_CELL_ID_RE = re.compile(r"([A-Za-z]+)([1-9][0-9]*)")


class InvalidCellIdError(ValueError):
    """Raised when text is not a valid A1-style cell identifier."""


def column_label(col: int) -> str:
    """0 -> 'A', 25 -> 'Z', 26 -> 'AA', 701 -> 'ZZ'."""
    if col < 0:
        raise ValueError(f"Column index must be >= 0, got {col}")
    n = col + 1
    label = ""
    while n > 0:
        rem = (n - 1) % 26
        label = _LETTERS[rem] + label
        n = (n - 1) // 26
    return label


def column_index(label: str) -> int:
    """'A' -> 0, 'Z' -> 25, 'AA' -> 26. Case-insensitive."""
    if not label or not label.isascii() or not label.isalpha():
        raise ValueError(f"Invalid column label: {label!r}")
    n = 0
    for ch in label.upper():
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def is_cell_id(text: str) -> bool:
    return _CELL_ID_RE.fullmatch(text) is not None


def a1_to_rowcol(cell_id: str) -> tuple[int, int]:
    """'A1' -> (0, 0), 'C5' -> (4, 2)."""
    m = _CELL_ID_RE.fullmatch(cell_id)
    if not m:
        raise InvalidCellIdError(f"Invalid cell id: {cell_id!r}")
    return int(m.group(2)) - 1, column_index(m.group(1))


def rowcol_to_a1(row: int, col: int) -> str:
    """(0, 0) -> 'A1', (4, 2) -> 'C5'."""
    if row < 0:
        raise ValueError(f"Row index must be >= 0, got {row}")
    return f"{column_label(col)}{row + 1}"


def _range_bounds(range_ref: str) -> tuple[int, int, int, int] | None:
    """Normalized ``(r_min, r_max, c_min, c_max)`` or None when malformed."""
    parts = range_ref.split(":")
    if len(parts) != 2:
        return None
    try:
        start_row, start_col = a1_to_rowcol(parts[0])
        end_row, end_col = a1_to_rowcol(parts[1])
    except InvalidCellIdError:
        return None
    return (
        min(start_row, end_row),
        max(start_row, end_row),
        min(start_col, end_col),
        max(start_col, end_col),
    )


def range_shape(range_ref: str) -> tuple[int, int]:
    """Rows and columns spanned by a range: "A1:C2" -> (2, 3).

    Malformed input gives (0, 0).
    """
    bounds = _range_bounds(range_ref)
    if bounds is None:
        return (0, 0)
    r_min, r_max, c_min, c_max = bounds
    return (r_max - r_min + 1, c_max - c_min + 1)


def expand_range(range_ref: str) -> list[str]:
    """Expand "A1:B2" into ["A1", "B1", "A2", "B2"] (row-major).

    Endpoints may be given in any order. Malformed input expands to an
    empty list.
    """
    bounds = _range_bounds(range_ref)
    if bounds is None:
        return []
    r_min, r_max, c_min, c_max = bounds
    cells: list[str] = []
    for r in range(r_min, r_max + 1):
        for c in range(c_min, c_max + 1):
            cells.append(rowcol_to_a1(r, c))
    return cells
