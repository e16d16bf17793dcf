"""sheetcalc.calc - Formula evaluation engine for sheet snapshots."""

from sheetcalc.calc._evaluator import SheetEvaluator, evaluate_all, evaluate_cell
from sheetcalc.calc._expression import ExpressionEvaluator
from sheetcalc.calc._functions import FunctionRegistry
from sheetcalc.calc._parser import (
    CellContent,
    CellKind,
    PreprocessedFormula,
    all_references,
    classify_cell,
    is_numeric_string,
    parse_functions,
    parse_range_references,
    parse_references,
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

__all__ = [
    "CellContent",
    "CellError",
    "CellKind",
    "CellReferenceError",
    "CellValue",
    "EvaluationContext",
    "ExpressionEngine",
    "ExpressionError",
    "ExpressionEvaluator",
    "FunctionRegistry",
    "PreprocessedFormula",
    "SheetEvaluator",
    "all_references",
    "classify_cell",
    "evaluate_all",
    "evaluate_cell",
    "is_numeric_string",
    "parse_functions",
    "parse_range_references",
    "parse_references",
    "preprocess_formula",
    "to_number",
]
