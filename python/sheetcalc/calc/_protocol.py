"""Result types, error tags, and the expression engine protocol."""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


class CellError:
    """Error tag shown in place of a cell value.

    Use ``CellError.of(code)`` to get the interned instance for a code.
    Tags compare equal to their string code (``CellError.CYCLE == "#CYCLE"``).
    """

    __slots__ = ("code",)
    _cache: dict[str, CellError] = {}

    CYCLE: CellError
    ERROR: CellError

    def __init__(self, code: str) -> None:
        self.code = code

    @classmethod
    def of(cls, code: str) -> CellError:
        canon = code.upper()
        if canon not in cls._cache:
            cls._cache[canon] = cls(canon)
        return cls._cache[canon]

    def __repr__(self) -> str:
        return self.code

    def __str__(self) -> str:
        return self.code

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CellError):
            return self.code == other.code
        if isinstance(other, str):
            return self.code == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code)


CellError.CYCLE = CellError.of("#CYCLE")
CellError.ERROR = CellError.of("#ERROR")


def format_number(value: int | float) -> str:
    """Format a numeric result for cell display."""
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        return str(value)
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return f"{value:.15g}"


@dataclass(frozen=True)
class CellValue:
    """The resolved value of one cell: a number, a string, absent, or an error."""

    value: int | float | str | None = None
    error: CellError | None = None

    @classmethod
    def failed(cls, error: CellError) -> CellValue:
        return cls(value=None, error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def display(self) -> str:
        """Text shown in the grid for this cell."""
        if self.error is not None:
            return self.error.code
        if self.value is None:
            return ""
        if isinstance(self.value, str):
            return self.value
        return format_number(self.value)


@dataclass
class EvaluationContext:
    """Per-pass state: resolved values and cells currently being resolved."""

    memo: dict[str, CellValue] = field(default_factory=dict)
    visiting: set[str] = field(default_factory=set)


class ExpressionError(Exception):
    """The expression grammar failed to parse or evaluate a formula body."""


class CellReferenceError(ExpressionError):
    """A cell read during evaluation carries an error tag."""

    def __init__(self, cell_id: str, error: CellError) -> None:
        super().__init__(f"{cell_id} evaluates to {error}")
        self.cell_id = cell_id
        self.error = error


@runtime_checkable
class ExpressionEngine(Protocol):
    """Protocol for arithmetic expression evaluators."""

    def evaluate(
        self,
        text: str,
        variables: Mapping[str, Any],
        functions: Mapping[str, Callable[[list[Any]], Any]],
    ) -> Any:
        """Evaluate *text* against the given environment.

        Raises ExpressionError when the text cannot be parsed or evaluated.
        A variable bound to a :class:`CellError` must raise
        CellReferenceError when it is read.
        """
        ...
