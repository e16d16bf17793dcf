"""Tests for sheetcalc.calc SheetEvaluator."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from sheetcalc._utils import rowcol_to_a1
from sheetcalc.calc import (
    CellError,
    CellValue,
    EvaluationContext,
    ExpressionError,
    FunctionRegistry,
    SheetEvaluator,
    evaluate_all,
    evaluate_cell,
)


def _values(results: dict[str, CellValue], *cell_ids: str) -> list[Any]:
    return [results[c].value for c in cell_ids]


class TestLiterals:
    def test_number(self) -> None:
        results = evaluate_all({"A1": "42", "A2": "-3.5", "A3": " 7 "}, rows=3, cols=1)
        assert _values(results, "A1", "A2", "A3") == [42, -3.5, 7]
        assert all(results[c].error is None for c in ("A1", "A2", "A3"))

    def test_apostrophe_forces_text(self) -> None:
        results = evaluate_all({"A1": "'123"}, rows=1, cols=1)
        assert results["A1"].value == "123"
        assert isinstance(results["A1"].value, str)

    def test_plain_text(self) -> None:
        results = evaluate_all({"A1": "hello", "A2": "1e3", "A3": "+5"}, rows=3, cols=1)
        assert _values(results, "A1", "A2", "A3") == ["hello", "1e3", "+5"]

    def test_empty_cells_absent(self) -> None:
        results = evaluate_all({}, rows=2, cols=2)
        assert set(results) == {"A1", "B1", "A2", "B2"}
        assert all(v == CellValue() for v in results.values())


class TestFormulas:
    def test_sum_of_range(self) -> None:
        results = evaluate_all({"A1": "2", "A2": "3", "A3": "=SUM(A1:A2)"}, rows=3, cols=1)
        assert results["A3"] == CellValue(5)
        assert results["A3"].error is None

    def test_chain(self) -> None:
        sheet = {"A1": "10", "A2": "20", "A3": "=SUM(A1:A2)", "A4": "=A3*2"}
        results = evaluate_all(sheet, rows=4, cols=1)
        assert results["A4"].value == 60

    def test_forward_reference(self) -> None:
        results = evaluate_all({"A1": "=B1+1", "B1": "=C1*2", "C1": "4"}, rows=1, cols=3)
        assert _values(results, "A1", "B1", "C1") == [9, 8, 4]

    def test_lowercase_references(self) -> None:
        results = evaluate_all({"A1": "5", "B1": "=a1*2+sum(a1:a1)"}, rows=1, cols=2)
        assert results["B1"].value == 15

    def test_empty_reference_is_zero(self) -> None:
        results = evaluate_all({"A1": "=B1+1"}, rows=1, cols=2)
        assert results["A1"].value == 1

    def test_text_reference_passes_through(self) -> None:
        results = evaluate_all({"A1": "hello", "B1": "=A1"}, rows=1, cols=2)
        assert results["B1"].value == "hello"

    def test_text_reference_is_zero_in_arithmetic(self) -> None:
        results = evaluate_all({"A1": "hello", "B1": "=A1+1"}, rows=1, cols=2)
        assert results["B1"].value == 1

    def test_literal_numeric_text_in_arithmetic(self) -> None:
        results = evaluate_all({"A1": "'41", "B1": "=A1+1"}, rows=1, cols=2)
        assert results["B1"].value == 42

    def test_constant_formula(self) -> None:
        results = evaluate_all({"A1": "=42"}, rows=1, cols=1)
        assert results["A1"].value == 42

    def test_string_formula(self) -> None:
        results = evaluate_all({"A1": '="a"&"b"'}, rows=1, cols=1)
        assert results["A1"].value == "ab"

    def test_boolean_result_is_absent(self) -> None:
        results = evaluate_all({"A1": "=1<2"}, rows=1, cols=1)
        assert results["A1"] == CellValue()

    def test_bare_range_result_is_absent(self) -> None:
        results = evaluate_all({"A1": "1", "A2": "2", "B1": "=A1:A2"}, rows=2, cols=2)
        assert results["B1"] == CellValue()

    def test_range_of_range(self) -> None:
        sheet = {"A1": "1", "A2": "2", "B1": "=SUM(RANGE(A1:A2))"}
        results = evaluate_all(sheet, rows=2, cols=2)
        assert results["B1"].value == 3

    def test_range_built_at_runtime(self) -> None:
        sheet = {"A1": "1", "A2": "2", "A3": "3", "B1": '=SUM(RANGE("A" & "1:A3"))'}
        results = evaluate_all(sheet, rows=1, cols=2)
        assert results["B1"].value == 6
        assert results["A3"].value == 3


class TestAggregates:
    @pytest.fixture
    def mixed(self) -> dict[str, str]:
        # A1=4, A2 empty, A3 text, A4=-2, A5 numeric literal text
        return {"A1": "4", "A3": "text", "A4": "-2", "A5": "'6"}

    @pytest.mark.parametrize(
        "formula,expected",
        [
            ("=SUM(A1:A5)", 8),
            ("=AVG(A1:A5)", 1.6),
            ("=MIN(A1:A5)", -2),
            ("=MAX(A1:A5)", 6),
            ("=COUNT(A1:A5)", 5),
        ],
    )
    def test_mixed_range(self, mixed: dict[str, str], formula: str, expected: float) -> None:
        sheet = dict(mixed, B1=formula)
        results = evaluate_all(sheet, rows=5, cols=2)
        assert results["B1"].value == pytest.approx(expected)

    def test_scalars_and_ranges_mixed(self) -> None:
        sheet = {"A1": "1", "A2": "2", "B1": "=SUM(A1:A2, 10, A1)"}
        results = evaluate_all(sheet, rows=2, cols=2)
        assert results["B1"].value == 14

    def test_two_dimensional_range(self) -> None:
        sheet = {"A1": "1", "B1": "2", "A2": "3", "B2": "4", "C1": "=SUM(B2:A1)"}
        results = evaluate_all(sheet, rows=2, cols=3)
        assert results["C1"].value == 10

    def test_aggregate_arithmetic(self) -> None:
        sheet = {"A1": "2", "A2": "4", "B1": "=MAX(A1:A2)-MIN(A1:A2)+AVG(A1:A2)*2"}
        results = evaluate_all(sheet, rows=2, cols=2)
        assert results["B1"].value == 8


class TestCycles:
    def test_self_reference(self) -> None:
        results = evaluate_all({"A1": "=A1"}, rows=1, cols=1)
        assert results["A1"].error == CellError.CYCLE
        assert results["A1"].value is None

    def test_two_cell_cycle(self) -> None:
        results = evaluate_all({"A1": "=B1", "B1": "=A1"}, rows=1, cols=2)
        assert results["A1"].error == "#CYCLE"
        assert results["B1"].error == "#CYCLE"

    def test_three_cell_cycle(self) -> None:
        results = evaluate_all({"A1": "=B1+1", "B1": "=C1+1", "C1": "=A1+1"}, rows=1, cols=3)
        for cell_id in ("A1", "B1", "C1"):
            assert results[cell_id].error == CellError.CYCLE

    def test_long_cycle_terminates(self) -> None:
        n = 500
        sheet = {f"A{i}": f"=A{i + 1}" for i in range(1, n)}
        sheet[f"A{n}"] = "=A1"
        results = evaluate_all(sheet, rows=n, cols=1)
        assert all(results[f"A{i}"].error == CellError.CYCLE for i in range(1, n + 1))

    def test_cycle_through_range(self) -> None:
        results = evaluate_all({"A1": "1", "A2": "=SUM(A1:A3)"}, rows=3, cols=1)
        assert results["A2"].error == CellError.CYCLE
        assert results["A1"].value == 1

    def test_cycle_propagates_to_dependents(self) -> None:
        sheet = {"A1": "=B1", "B1": "=A1", "C1": "=A1+1"}
        results = evaluate_all(sheet, rows=1, cols=3)
        assert results["C1"].error == CellError.CYCLE

    def test_cycle_does_not_affect_unrelated_cells(self) -> None:
        sheet = {"A1": "=B1", "B1": "=A1", "A2": "5", "B2": "=A2*2"}
        results = evaluate_all(sheet, rows=2, cols=2)
        assert results["B2"] == CellValue(10)

    def test_runtime_range_including_itself(self) -> None:
        results = evaluate_all({"A1": '=SUM(RANGE("A"&"1:A2"))'}, rows=2, cols=1)
        assert results["A1"].error == CellError.CYCLE


class TestErrors:
    def test_malformed_expression(self) -> None:
        results = evaluate_all({"A1": "=1/"}, rows=1, cols=1)
        assert results["A1"].error == CellError.ERROR
        assert results["A1"].value is None

    @pytest.mark.parametrize("formula", ["=", "=foo+1", "=VLOOKUP(A2)", "=1/0", "=(1+2", "=B1:C1:D1"])
    def test_error_tags(self, formula: str) -> None:
        results = evaluate_all({"A1": formula}, rows=1, cols=1)
        assert results["A1"].error == CellError.ERROR

    def test_error_propagates_to_dependents(self) -> None:
        results = evaluate_all({"A1": "=1/", "B1": "=A1*2"}, rows=1, cols=2)
        assert results["B1"].error == CellError.ERROR

    def test_error_inside_range_propagates(self) -> None:
        results = evaluate_all({"A2": "=1/0", "B1": "=SUM(A1:A3)"}, rows=3, cols=2)
        assert results["B1"].error == CellError.ERROR

    def test_unread_failed_reference(self) -> None:
        results = evaluate_all({"A1": "=1/", "B1": '="see A1"'}, rows=1, cols=2)
        assert results["A1"].error == CellError.ERROR
        assert results["B1"] == CellValue("see A1")

    def test_unread_cycle_reference(self) -> None:
        sheet = {"A1": "=B1", "B1": "=A1", "C1": '="A1 loops"&1'}
        results = evaluate_all(sheet, rows=1, cols=3)
        assert results["C1"] == CellValue("A1 loops1")

    def test_error_read_as_function_argument(self) -> None:
        results = evaluate_all({"A1": "=1/0", "B1": "=COUNT(A1, 2)"}, rows=1, cols=2)
        assert results["B1"].error == CellError.ERROR

    def test_first_error_read_wins(self) -> None:
        sheet = {"A1": "=A1", "B1": "=1/", "C1": "=B1+A1"}
        results = evaluate_all(sheet, rows=1, cols=3)
        assert results["C1"].error == CellError.ERROR

    def test_huge_literal(self) -> None:
        results = evaluate_all({"A1": "=1e400"}, rows=1, cols=1)
        assert results["A1"].display == "#ERROR"

    def test_errors_do_not_stop_the_pass(self) -> None:
        sheet = {"A1": "=1/", "B1": "=B1", "C1": "3"}
        results = evaluate_all(sheet, rows=1, cols=3)
        assert results["C1"].value == 3

    def test_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="sheetcalc.calc._evaluator"):
            evaluate_all({"A1": "=1/"}, rows=1, cols=1)
        assert "Cannot evaluate formula" in caplog.text

    def test_cycle_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="sheetcalc.calc._evaluator"):
            evaluate_all({"A1": "=A1"}, rows=1, cols=1)
        assert "Circular reference detected at A1" in caplog.text


class TestEvaluateAll:
    def test_row_major_keys(self) -> None:
        results = evaluate_all({}, rows=2, cols=2)
        assert list(results) == ["A1", "B1", "A2", "B2"]

    def test_cells_outside_grid_resolved(self) -> None:
        results = evaluate_all({"A1": "=Z100+1", "Z100": "9"}, rows=1, cols=1)
        assert results["A1"].value == 10
        assert results["Z100"].value == 9

    def test_idempotent(self) -> None:
        sheet = {"A1": "2", "A2": "=A1*A1", "B1": "=B2", "B2": "=B1", "C1": "=1/"}
        first = evaluate_all(sheet, rows=2, cols=3)
        second = evaluate_all(sheet, rows=2, cols=3)
        assert first == second

    def test_snapshot_not_mutated(self) -> None:
        sheet = {"A1": "=B1", "B1": "=A1"}
        evaluate_all(sheet, rows=3, cols=3)
        assert sheet == {"A1": "=B1", "B1": "=A1"}

    @pytest.mark.parametrize("rows,cols", [(0, 1), (1, 0), (-1, 5)])
    def test_invalid_dimensions(self, rows: int, cols: int) -> None:
        with pytest.raises(ValueError):
            evaluate_all({}, rows=rows, cols=cols)

    def test_long_reference_chain(self) -> None:
        n = 5000
        sheet = {f"A{i}": f"=A{i + 1}+1" for i in range(1, n)}
        sheet[f"A{n}"] = "0"
        results = evaluate_all(sheet, rows=1, cols=1)
        assert results["A1"].value == n - 1

    def test_long_flat_formula(self) -> None:
        n = 1200
        sheet = {f"A{i}": "1" for i in range(1, n + 1)}
        sheet["B1"] = "=" + "+".join(f"A{i}" for i in range(1, n + 1))
        sheet["C1"] = "=" + "+".join(["1"] * 2000)
        results = evaluate_all(sheet, rows=1, cols=3)
        assert results["B1"] == CellValue(n)
        assert results["C1"] == CellValue(2000)

    def test_each_cell_evaluated_once(self) -> None:
        calls: list[list[Any]] = []
        registry = FunctionRegistry()
        registry.register("TRACE", lambda args: calls.append(args) or args[0])
        sheet = {"A1": "=TRACE(1)", "B1": "=A1+A1", "C1": "=SUM(A1:B1)"}
        SheetEvaluator(functions=registry).evaluate_all(sheet, rows=1, cols=3)
        assert len(calls) == 1


class TestEvaluateCell:
    def test_memo_hit(self) -> None:
        context = EvaluationContext()
        context.memo["A1"] = CellValue(99)
        assert evaluate_cell("A1", {"A1": "1"}, context) == CellValue(99)

    def test_visiting_cell_is_a_cycle(self) -> None:
        context = EvaluationContext(visiting={"A1"})
        assert evaluate_cell("A1", {"A1": "1"}, context).error == CellError.CYCLE

    def test_fills_context(self) -> None:
        context = EvaluationContext()
        value = evaluate_cell("A1", {"A1": "=B1*2", "B1": "4"}, context)
        assert value == CellValue(8)
        assert context.memo["B1"] == CellValue(4)
        assert context.visiting == set()

    def test_visiting_cleared_after_exception(self) -> None:
        class Exploding:
            def evaluate(self, text: str, variables: Any, functions: Any) -> Any:
                raise RuntimeError("engine crashed")

        context = EvaluationContext()
        with pytest.raises(RuntimeError):
            SheetEvaluator(engine=Exploding()).evaluate_cell("A1", {"A1": "=B1", "B1": "=1"}, context)
        assert context.visiting == set()


class TestInjectedEngine:
    def test_custom_engine_receives_preprocessed_formula(self) -> None:
        seen: dict[str, Any] = {}

        class Recording:
            def evaluate(self, text: str, variables: Any, functions: Any) -> Any:
                seen["text"] = text
                seen["variables"] = dict(variables)
                seen["range"] = functions["RANGE"](["A1:A2"])
                return 7

        sheet = {"A1": "1", "A2": "x", "B1": "=SUM(A1:A2)+A2"}
        results = SheetEvaluator(engine=Recording()).evaluate_all(sheet, rows=2, cols=2)
        assert results["B1"] == CellValue(7)
        assert seen["text"] == 'SUM(RANGE("A1:A2"))+A2'
        assert seen["variables"] == {"A1": 1, "A2": "x"}
        assert seen["range"] == [1, 0]

    def test_engine_error_becomes_error_tag(self) -> None:
        class Failing:
            def evaluate(self, text: str, variables: Any, functions: Any) -> Any:
                raise ExpressionError("nope")

        results = SheetEvaluator(engine=Failing()).evaluate_all({"A1": "=1"}, rows=1, cols=1)
        assert results["A1"].error == CellError.ERROR

    def test_custom_function(self) -> None:
        registry = FunctionRegistry()
        registry.register("DOUBLE", lambda args: args[0] * 2)
        results = SheetEvaluator(functions=registry).evaluate_all(
            {"A1": "21", "B1": "=DOUBLE(A1)"}, rows=1, cols=2
        )
        assert results["B1"].value == 42


class TestCellValueDisplay:
    @pytest.mark.parametrize(
        "cell_value,text",
        [
            (CellValue(), ""),
            (CellValue(5), "5"),
            (CellValue(5.0), "5"),
            (CellValue(2.5), "2.5"),
            (CellValue(0.1 + 0.2), "0.3"),
            (CellValue("abc"), "abc"),
            (CellValue.failed(CellError.CYCLE), "#CYCLE"),
            (CellValue.failed(CellError.ERROR), "#ERROR"),
        ],
    )
    def test_display(self, cell_value: CellValue, text: str) -> None:
        assert cell_value.display == text

    def test_error_tags_are_interned(self) -> None:
        assert CellError.of("#cycle") is CellError.CYCLE
        assert str(CellError.ERROR) == "#ERROR"


def test_grid_helper_ids() -> None:
    # Sanity check that the evaluator walks the same ids the helpers produce
    results = evaluate_all({}, rows=1, cols=28)
    assert rowcol_to_a1(0, 27) in results
    assert "AB1" in results
