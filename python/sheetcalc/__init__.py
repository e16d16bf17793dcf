"""sheetcalc - formula evaluation for spreadsheet grids.

Usage::

    from sheetcalc import Sheet, display

    sheet = Sheet(rows=3, cols=1)
    sheet["A1"] = "2"
    sheet["A2"] = "3"
    sheet["A3"] = "=SUM(A1:A2)"

    results = sheet.evaluate()
    print(display(results, "A3"))  # 5

Or, with a plain snapshot mapping::

    from sheetcalc import evaluate_all

    results = evaluate_all({"A1": "=B1", "B1": "=A1"}, rows=1, cols=2)
    print(results["A1"].error)  # #CYCLE
"""

from sheetcalc._sheet import Sheet, display
from sheetcalc._utils import (
    InvalidCellIdError,
    a1_to_rowcol,
    column_index,
    column_label,
    expand_range,
    range_shape,
    rowcol_to_a1,
)
from sheetcalc.calc import (
    CellError,
    CellValue,
    EvaluationContext,
    SheetEvaluator,
    evaluate_all,
    evaluate_cell,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CellError",
    "CellValue",
    "EvaluationContext",
    "InvalidCellIdError",
    "Sheet",
    "SheetEvaluator",
    "a1_to_rowcol",
    "column_index",
    "column_label",
    "display",
    "evaluate_all",
    "evaluate_cell",
    "expand_range",
    "range_shape",
    "rowcol_to_a1",
]
