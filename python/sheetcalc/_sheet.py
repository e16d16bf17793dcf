"""Sheet: sparse grid of raw cell text with declared dimensions."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from sheetcalc._utils import a1_to_rowcol, rowcol_to_a1
from sheetcalc.calc import SheetEvaluator

if TYPE_CHECKING:
    from sheetcalc.calc import CellValue

DEFAULT_ROWS = 30
DEFAULT_COLS = 20


class Sheet:
    """Raw cell text keyed by canonical cell id (``"A1"``).

    Empty cells are never stored: assigning ``""`` or ``None`` removes the
    entry. The declared ``rows x cols`` grid is what gets displayed and
    evaluated; cells outside it may still be stored and read by formulas.
    """

    __slots__ = ("_cells", "_rows", "_cols", "_next_append_row")

    def __init__(self, rows: int = DEFAULT_ROWS, cols: int = DEFAULT_COLS) -> None:
        self._cells: dict[str, str] = {}
        self._rows = 1
        self._cols = 1
        self._next_append_row = 0
        self.resize(rows, cols)

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[Any]]) -> Sheet:
        """Build a sheet sized to fit a grid of raw values."""
        sheet = cls(1, 1)
        sheet.load_rows(rows)
        return sheet

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    def resize(self, rows: int, cols: int) -> None:
        """Change the declared grid. Stored cells are kept."""
        if rows < 1 or cols < 1:
            raise ValueError(f"Grid dimensions must be >= 1, got {rows}x{cols}")
        self._rows = rows
        self._cols = cols

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    @staticmethod
    def _canonical(key: str) -> str:
        row, col = a1_to_rowcol(key)
        return rowcol_to_a1(row, col)

    def __getitem__(self, key: str) -> str:
        """``sheet['A1']`` -> raw text, ``""`` when unset."""
        return self._cells.get(self._canonical(key), "")

    def __setitem__(self, key: str, value: Any) -> None:
        """``sheet['A1'] = '=B1*2'``; empty values delete the cell."""
        cell_id = self._canonical(key)
        raw = "" if value is None else str(value)
        if raw == "":
            self._cells.pop(cell_id, None)
        else:
            self._cells[cell_id] = raw

    def __delitem__(self, key: str) -> None:
        self._cells.pop(self._canonical(key), None)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        try:
            return self._canonical(key) in self._cells
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[str]:
        return iter(self._cells)

    def clear(self) -> None:
        self._cells.clear()
        self._next_append_row = 0

    # ------------------------------------------------------------------
    # Row-wise access
    # ------------------------------------------------------------------

    def append(self, iterable: Iterable[Any]) -> None:
        """Write a row of values below the last appended row.

        Values go into columns starting at A. The declared grid grows to fit.
        """
        row = self._next_append_row
        values = list(iterable)
        for col, value in enumerate(values):
            self[rowcol_to_a1(row, col)] = value
        self._next_append_row += 1
        self.resize(max(self._rows, row + 1), max(self._cols, len(values)))

    def iter_rows(self) -> Iterator[list[str]]:
        """Yield each row of the declared grid as a list of raw text."""
        for row in range(self._rows):
            yield [self._cells.get(rowcol_to_a1(row, col), "") for col in range(self._cols)]

    def load_rows(self, rows: Iterable[Iterable[Any]]) -> None:
        """Replace all content with a grid of raw values.

        The declared grid grows to fit the data but never shrinks.
        """
        self.clear()
        for values in rows:
            self.append(values)

    def snapshot(self) -> Mapping[str, str]:
        """Read-only copy of the stored cells."""
        return MappingProxyType(dict(self._cells))

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, evaluator: SheetEvaluator | None = None) -> dict[str, CellValue]:
        """Evaluate the declared grid (and anything its formulas read)."""
        if evaluator is None:
            evaluator = SheetEvaluator()
        return evaluator.evaluate_all(self.snapshot(), self._rows, self._cols)

    def __repr__(self) -> str:
        return f"<Sheet {self._rows}x{self._cols} cells={len(self._cells)}>"


def display(results: Mapping[str, CellValue], cell_id: str) -> str:
    """Grid text for *cell_id*: the error tag, the value, or ``""``."""
    cell_value = results.get(cell_id)
    if cell_value is None:
        return ""
    return cell_value.display
