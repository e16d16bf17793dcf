"""SheetEvaluator: resolves every cell of a sheet snapshot.

Cells are resolved on demand and memoized per pass. Formula dependencies are
walked with an explicit work stack rather than Python recursion, so a chain of
references as long as the sheet itself cannot exhaust the interpreter stack.
A dependency that is still being resolved when it is reached again closes a
cycle and is tagged ``#CYCLE``; the tag then propagates to every formula that
reads it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from sheetcalc._utils import expand_range, rowcol_to_a1
from sheetcalc.calc._expression import ExpressionEvaluator
from sheetcalc.calc._functions import FunctionRegistry
from sheetcalc.calc._parser import (
    CellContent,
    CellKind,
    PreprocessedFormula,
    classify_cell,
    preprocess_formula,
    to_number,
)
from sheetcalc.calc._protocol import (
    CellError,
    CellReferenceError,
    CellValue,
    EvaluationContext,
    ExpressionEngine,
    ExpressionError,
)

logger = logging.getLogger(__name__)


class _Frame:
    """A cell under resolution on the work stack."""

    __slots__ = ("cell_id", "content", "formula", "dependencies", "_pending")

    def __init__(
        self,
        cell_id: str,
        content: CellContent,
        formula: PreprocessedFormula | None,
    ) -> None:
        self.cell_id = cell_id
        self.content = content
        self.formula = formula
        self.dependencies: list[str] = formula.dependencies() if formula else []
        self._pending: Iterator[str] = iter(self.dependencies)

    def next_unresolved(self, memo: Mapping[str, CellValue]) -> str | None:
        """Next dependency without a memoized value, or None when all are done."""
        for dep in self._pending:
            if dep not in memo:
                return dep
        return None


class SheetEvaluator:
    """Evaluates sheet snapshots into cell values.

    Usage::

        evaluator = SheetEvaluator()
        results = evaluator.evaluate_all({"A1": "2", "A2": "=A1*3"}, rows=2, cols=1)
        results["A2"].value  # 6

    A custom :class:`FunctionRegistry` adds functions next to the aggregate
    builtins; any :class:`ExpressionEngine` can replace the default grammar.
    """

    def __init__(
        self,
        functions: FunctionRegistry | None = None,
        engine: ExpressionEngine | None = None,
    ) -> None:
        self._functions = functions if functions is not None else FunctionRegistry()
        self._engine = engine if engine is not None else ExpressionEvaluator()

    def evaluate_all(
        self, sheet: Mapping[str, str], rows: int, cols: int
    ) -> dict[str, CellValue]:
        """Evaluate every cell of a ``rows x cols`` grid in row-major order.

        The result also holds any cell outside the grid that a formula reads.
        """
        if rows < 1 or cols < 1:
            raise ValueError(f"Grid dimensions must be >= 1, got {rows}x{cols}")
        context = EvaluationContext()
        for row in range(rows):
            for col in range(cols):
                cell_id = rowcol_to_a1(row, col)
                if cell_id not in context.memo:
                    self.evaluate_cell(cell_id, sheet, context)
        return context.memo

    def evaluate_cell(
        self, cell_id: str, sheet: Mapping[str, str], context: EvaluationContext
    ) -> CellValue:
        """Resolve one cell, resolving whatever it depends on first."""
        memo = context.memo
        if cell_id in memo:
            return memo[cell_id]
        if cell_id in context.visiting:
            return self._mark_cycle(cell_id, context)

        stack = [self._open(cell_id, sheet, context)]
        try:
            while stack:
                frame = stack[-1]
                dep = frame.next_unresolved(memo)
                if dep is not None:
                    if dep in context.visiting:
                        self._mark_cycle(dep, context)
                    else:
                        stack.append(self._open(dep, sheet, context))
                    continue
                result = self._resolve(frame, sheet, context)
                stack.pop()
                context.visiting.discard(frame.cell_id)
                # Keep a value stored while this cell was still on the stack
                memo.setdefault(frame.cell_id, result)
        finally:
            for frame in stack:
                context.visiting.discard(frame.cell_id)
        return memo[cell_id]

    # ------------------------------------------------------------------
    # Work stack steps
    # ------------------------------------------------------------------

    def _open(
        self, cell_id: str, sheet: Mapping[str, str], context: EvaluationContext
    ) -> _Frame:
        context.visiting.add(cell_id)
        content = classify_cell(sheet.get(cell_id) or "")
        formula = None
        if content.kind is CellKind.FORMULA:
            formula = preprocess_formula(content.text)
        return _Frame(cell_id, content, formula)

    @staticmethod
    def _mark_cycle(cell_id: str, context: EvaluationContext) -> CellValue:
        logger.debug("Circular reference detected at %s", cell_id)
        return context.memo.setdefault(cell_id, CellValue.failed(CellError.CYCLE))

    def _resolve(
        self, frame: _Frame, sheet: Mapping[str, str], context: EvaluationContext
    ) -> CellValue:
        if frame.formula is not None:
            return self._evaluate_formula(frame, frame.formula, sheet, context)
        content = frame.content
        if content.kind is CellKind.EMPTY:
            return CellValue()
        if content.kind is CellKind.NUMBER:
            return CellValue(content.number)
        # LITERAL and TEXT
        return CellValue(content.text)

    # ------------------------------------------------------------------
    # Formula evaluation
    # ------------------------------------------------------------------

    def _evaluate_formula(
        self,
        frame: _Frame,
        formula: PreprocessedFormula,
        sheet: Mapping[str, str],
        context: EvaluationContext,
    ) -> CellValue:
        """Evaluate a formula cell whose dependencies are all memoized.

        A reference to a failed cell is bound to its :class:`CellError`; the
        grammar raises :class:`CellReferenceError` only when the name is read.
        """
        memo = context.memo
        variables: dict[str, Any] = {}
        for ref in formula.references:
            dep = memo[ref]
            if dep.error is not None:
                variables[ref] = dep.error
            else:
                variables[ref] = 0 if dep.value is None else dep.value

        functions = self._functions.as_dict()
        functions["RANGE"] = lambda args: self._range_values(args, sheet, context)

        try:
            out = self._engine.evaluate(formula.body, variables, functions)
        except CellReferenceError as e:
            return CellValue.failed(e.error)
        except ExpressionError as e:
            logger.debug(
                "Cannot evaluate formula %r in %s: %s", frame.content.text, frame.cell_id, e
            )
            return CellValue.failed(CellError.ERROR)

        if isinstance(out, bool) or not isinstance(out, (int, float, str)):
            return CellValue()
        return CellValue(out)

    def _range_values(
        self, args: list[Any], sheet: Mapping[str, str], context: EvaluationContext
    ) -> list[int | float]:
        """RANGE("A1:B2"): member values in row-major order, coerced to numbers.

        Members are normally memoized already; a range text built at runtime
        is resolved on demand.
        """
        if len(args) != 1:
            raise ExpressionError("RANGE requires exactly 1 argument")
        arg = args[0]
        if isinstance(arg, (list, tuple)):
            return list(arg)
        if not isinstance(arg, str):
            raise ExpressionError("RANGE requires a range such as \"A1:B2\"")
        values: list[int | float] = []
        for cell_id in expand_range(arg):
            cell_value = self.evaluate_cell(cell_id, sheet, context)
            if cell_value.error is not None:
                raise CellReferenceError(cell_id, cell_value.error)
            values.append(to_number(cell_value.value))
        return values


def evaluate_cell(
    cell_id: str, sheet: Mapping[str, str], context: EvaluationContext
) -> CellValue:
    """Resolve one cell with the default functions and grammar."""
    return SheetEvaluator().evaluate_cell(cell_id, sheet, context)


def evaluate_all(sheet: Mapping[str, str], rows: int, cols: int) -> dict[str, CellValue]:
    """Evaluate a whole snapshot with the default functions and grammar."""
    return SheetEvaluator().evaluate_all(sheet, rows, cols)
