"""ExpressionEvaluator: recursive descent evaluator for formula bodies.

Works directly on the formula text: the lowest-precedence operators at paren
depth 0 split the expression into operands, which are evaluated recursively
and folded left to right. A flat chain such as ``A1+A2+...+A5000`` therefore
costs one level of recursion, not one per operator. This
handles balanced parentheses, operator precedence, and nested calls such as
``SUM(RANGE("A1:A5"))*(B1+2)^2``.

Precedence (lowest to highest)::

    1. comparison      =, ==, <>, !=, <, >, <=, >=
    2. additive        +, -, & (text concatenation)
    3. multiplicative  *, /, %
    4. power           ^ (right associative)
    5. unary           -, +

Names are resolved case-insensitively against the variable and function
environments passed to :meth:`ExpressionEvaluator.evaluate`. Every failure is
raised as :class:`ExpressionError`.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from typing import Any

from sheetcalc.calc._parser import is_numeric_string, to_number
from sheetcalc.calc._protocol import (
    CellError,
    CellReferenceError,
    ExpressionError,
    format_number,
)

logger = logging.getLogger(__name__)

_NUMBER_LITERAL_RE = re.compile(r"(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_INTEGER_LITERAL_RE = re.compile(r"[0-9]+")
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_FUNC_CALL_RE = re.compile(r"([A-Za-z_][A-Za-z0-9_.]*)\s*\(")

_TWO_CHAR_CMP = (">=", "<=", "<>", "==", "!=")

# An operator directly after one of these is unary, not binary.
_OPERATOR_CHARS = frozenset("(,+-*/%^&<>=!")


# ---------------------------------------------------------------------------
# Expression parsing helpers
# ---------------------------------------------------------------------------


def _find_matching_paren(expr: str, start: int) -> int:
    """Index of the ``')'`` matching the ``'('`` at *expr[start]*, or -1."""
    depth = 1
    i = start + 1
    in_string = False
    while i < len(expr):
        ch = expr[i]
        if ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == '(':
                depth += 1
            elif ch == ')':
                depth -= 1
                if depth == 0:
                    return i
        i += 1
    return -1


def _match_function_call(expr: str) -> tuple[str, str] | None:
    """If *expr* is exactly ``FUNC(balanced_args)``, return ``(name, args_str)``.

    ``SUM(A1)*2`` is NOT matched (there's trailing content after the
    close-paren).
    """
    m = _FUNC_CALL_RE.match(expr)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = _find_matching_paren(expr, open_idx)
    if close_idx >= 0 and close_idx == len(expr) - 1:
        return (m.group(1), expr[open_idx + 1 : close_idx])
    return None


def _is_exponent_sign(expr: str, j: int) -> bool:
    """``True`` when ``expr[j]`` is the ``e`` of a literal like ``2.5e-1``."""
    if expr[j] not in ('e', 'E') or j < 1 or not expr[j - 1].isdigit():
        return False
    k = j - 1
    while k >= 0 and (expr[k].isdigit() or expr[k] == '.'):
        k -= 1
    # Digits must start a token; "A1E-1" is a name followed by minus.
    return k < 0 or not (expr[k].isalnum() or expr[k] == '_')


def _match_operator(expr: str, i: int, pass_type: str) -> str | None:
    """The operator of precedence level *pass_type* starting at ``expr[i]``."""
    ch = expr[i]
    if pass_type == "cmp":
        if expr[i : i + 2] in _TWO_CHAR_CMP:
            return expr[i : i + 2]
        return ch if ch in ('>', '<', '=') else None
    if pass_type == "add":
        return ch if ch in ('+', '-', '&') else None
    return ch if ch in ('*', '/', '%') else None


def _is_binary_at(expr: str, i: int, op: str) -> bool:
    """``False`` when the operator at ``expr[i]`` is unary or an exponent sign."""
    j = i - 1
    while j >= 0 and expr[j].isspace():
        j -= 1
    if j < 0 or expr[j] in _OPERATOR_CHARS:
        return False
    return not (op in ('+', '-') and _is_exponent_sign(expr, j))


def _split_top_level(expr: str) -> tuple[list[str], list[str]] | None:
    """Split at every lowest-precedence binary operator at paren depth 0.

    Returns ``(operands, operators)`` with one more operand than operators,
    or ``None`` when no binary operator sits at depth 0. Folding the operands
    left to right gives left associativity. Power is handled separately by
    :func:`_find_top_level_power`.
    """
    length = len(expr)

    for pass_type in ("cmp", "add", "mul"):
        operands: list[str] = []
        ops: list[str] = []
        depth = 0
        in_string = False
        start = 0
        i = 0
        while i < length:
            ch = expr[i]

            if ch == '"':
                in_string = not in_string
            elif in_string:
                pass
            elif ch == '(':
                depth += 1
            elif ch == ')':
                depth -= 1
            elif depth == 0:
                op = _match_operator(expr, i, pass_type)
                if op is not None and _is_binary_at(expr, i, op):
                    operands.append(expr[start:i].strip())
                    ops.append(op)
                    i += len(op)
                    start = i
                    continue
            i += 1

        if ops:
            operands.append(expr[start:].strip())
            if not all(operands):
                raise ExpressionError(f"Missing operand in {expr!r}")
            return operands, ops

    return None


def _find_top_level_power(expr: str) -> tuple[str, str] | None:
    """Split at the leftmost ``^`` at paren depth 0 (right associativity)."""
    depth = 0
    in_string = False
    for i, ch in enumerate(expr):
        if ch == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
        elif ch == '^' and depth == 0:
            left = expr[:i].strip()
            right = expr[i + 1 :].strip()
            if left and right:
                return (left, right)
            return None
    return None


def _split_top_level_args(args_str: str) -> list[str]:
    """Split on commas at depth 0, respecting strings and parentheses."""
    if not args_str.strip():
        return []
    args: list[str] = []
    depth = 0
    in_string = False
    current = ""
    for ch in args_str:
        if ch == '"':
            in_string = not in_string
            current += ch
        elif not in_string:
            if ch == '(':
                depth += 1
                current += ch
            elif ch == ')':
                depth -= 1
                current += ch
            elif ch == ',' and depth == 0:
                args.append(current.strip())
                current = ""
            else:
                current += ch
        else:
            current += ch
    args.append(current.strip())
    return args


# ---------------------------------------------------------------------------
# Operand coercion and operators
# ---------------------------------------------------------------------------


def _operand(value: Any) -> int | float:
    if isinstance(value, (list, tuple)):
        raise ExpressionError("A range cannot be used as an arithmetic operand")
    return to_number(value)


def _to_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        raise ExpressionError("A range cannot be used as a text operand")
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def _is_numeric_operand(value: Any) -> bool:
    if value is None or isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and is_numeric_string(value)


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic or text binary operation."""
    if op == '&':
        return _to_text(left) + _to_text(right)
    lf = _operand(left)
    rf = _operand(right)
    try:
        if op == '+':
            return lf + rf
        if op == '-':
            return lf - rf
        if op == '*':
            return lf * rf
        if op == '/':
            if rf == 0:
                raise ExpressionError("Division by zero")
            return lf / rf
        if op == '%':
            if rf == 0:
                raise ExpressionError("Modulo by zero")
            # Remainder takes the sign of the dividend
            if isinstance(lf, int) and isinstance(rf, int):
                rem = abs(lf) % abs(rf)
                return -rem if lf < 0 else rem
            return math.fmod(lf, rf)
    except OverflowError as e:
        raise ExpressionError(f"Numeric overflow in {op!r}") from e
    raise ExpressionError(f"Unknown operator {op!r}")


def _power(base: Any, exponent: Any) -> float:
    try:
        return math.pow(_operand(base), _operand(exponent))
    except (OverflowError, ValueError) as e:
        raise ExpressionError(f"Cannot raise {base!r} to {exponent!r}: {e}") from e


def _compare(left: Any, right: Any, op: str) -> bool:
    """Evaluate a comparison operation.

    Numeric when both sides look numeric, otherwise a case-insensitive text
    comparison.
    """
    if isinstance(left, (list, tuple)) or isinstance(right, (list, tuple)):
        raise ExpressionError("A range cannot be compared")
    if _is_numeric_operand(left) and _is_numeric_operand(right):
        lv: Any = to_number(left)
        rv: Any = to_number(right)
    else:
        lv = _to_text(left).lower()
        rv = _to_text(right).lower()
    if op == '>':
        return lv > rv
    if op == '<':
        return lv < rv
    if op == '>=':
        return lv >= rv
    if op == '<=':
        return lv <= rv
    if op in ('=', '=='):
        return lv == rv
    if op in ('<>', '!='):
        return lv != rv
    raise ExpressionError(f"Unknown comparison {op!r}")


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class _Scope:
    __slots__ = ("variables", "functions")

    def __init__(
        self,
        variables: dict[str, Any],
        functions: dict[str, Callable[[list[Any]], Any]],
    ) -> None:
        self.variables = variables
        self.functions = functions


class ExpressionEvaluator:
    """Evaluates arithmetic formula bodies.

    Usage::

        ev = ExpressionEvaluator()
        ev.evaluate("A1*2 + SUM(1, 2)", {"A1": 4}, {"SUM": lambda args: sum(args)})
        # -> 11
    """

    def evaluate(
        self,
        text: str,
        variables: Mapping[str, Any],
        functions: Mapping[str, Callable[[list[Any]], Any]],
    ) -> Any:
        scope = _Scope(
            {name.upper(): value for name, value in variables.items()},
            {name.upper(): func for name, func in functions.items()},
        )
        try:
            return self._eval_expr(text, scope)
        except RecursionError as e:
            raise ExpressionError("Expression is nested too deeply") from e

    def _eval_expr(self, expr: str, scope: _Scope) -> Any:
        """Recursively evaluate an expression.

        Dispatch order (first match wins):

        1. Binary/comparison split at top level
        2. Power split at top level
        3. Parenthesized sub-expression ``(...)``
        4. Function call ``FUNC(balanced_args)``
        5. Unary minus / plus
        6. Numeric literal
        7. String literal
        8. Boolean literal
        9. Variable
        """
        expr = expr.strip()
        if not expr:
            raise ExpressionError("Empty expression")

        # 1. Binary split (comparison -> additive -> multiplicative)
        split = _split_top_level(expr)
        if split:
            operands, ops = split
            result = self._eval_expr(operands[0], scope)
            for op, operand in zip(ops, operands[1:]):
                right_val = self._eval_expr(operand, scope)
                if op in ('+', '-', '*', '/', '%', '&'):
                    result = _binary_op(result, op, right_val)
                else:
                    result = _compare(result, right_val, op)
            return result

        # 2. Power
        power = _find_top_level_power(expr)
        if power:
            return _power(
                self._eval_expr(power[0], scope),
                self._eval_expr(power[1], scope),
            )

        # 3. Parenthesized sub-expression: (expr)
        if expr.startswith('('):
            close = _find_matching_paren(expr, 0)
            if close == len(expr) - 1:
                return self._eval_expr(expr[1:close], scope)

        # 4. Function call: FUNC(balanced_args)
        func = _match_function_call(expr)
        if func:
            return self._eval_function(func[0].upper(), func[1], scope)

        # 5. Unary minus / plus
        if expr.startswith('-'):
            return -_operand(self._eval_expr(expr[1:], scope))
        if expr.startswith('+'):
            return _operand(self._eval_expr(expr[1:], scope))

        # 6. Numeric literal
        if _NUMBER_LITERAL_RE.fullmatch(expr):
            if _INTEGER_LITERAL_RE.fullmatch(expr):
                return int(expr)
            number = float(expr)
            if not math.isfinite(number):
                raise ExpressionError(f"Number out of range: {expr}")
            return number

        # 7. String literal
        if len(expr) >= 2 and expr[0] == '"' and expr[-1] == '"' and '"' not in expr[1:-1]:
            return expr[1:-1]

        upper = expr.upper()

        # 8. Boolean
        if upper == 'TRUE':
            return True
        if upper == 'FALSE':
            return False

        # 9. Variable
        if _IDENTIFIER_RE.fullmatch(expr):
            if upper not in scope.variables:
                raise ExpressionError(f"Undefined variable: {expr}")
            value = scope.variables[upper]
            if isinstance(value, CellError):
                raise CellReferenceError(upper, value)
            return value

        raise ExpressionError(f"Cannot parse expression: {expr!r}")

    def _eval_function(self, func_name: str, args_str: str, scope: _Scope) -> Any:
        func = scope.functions.get(func_name)
        if func is None:
            raise ExpressionError(f"Unsupported function: {func_name}")
        args: list[Any] = []
        for raw in _split_top_level_args(args_str):
            if not raw:
                raise ExpressionError(f"Empty argument in {func_name}()")
            args.append(self._eval_expr(raw, scope))
        try:
            return func(args)
        except ExpressionError:
            raise
        except Exception as e:
            logger.debug("Error evaluating %s: %s", func_name, e)
            raise ExpressionError(f"{func_name} failed: {e}") from e
