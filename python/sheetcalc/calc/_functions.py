"""Aggregate function implementations and the function registry."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sheetcalc.calc._parser import to_number


def _flatten_numeric(values: list[Any]) -> list[int | float]:
    """Flatten sequences and coerce every entry with :func:`to_number`.

    Text and empty entries count as 0, so they still take up a slot.
    """
    result: list[int | float] = []
    for v in values:
        if isinstance(v, (list, tuple)):
            result.extend(_flatten_numeric(list(v)))
        else:
            result.append(to_number(v))
    return result


def _builtin_sum(args: list[Any]) -> int | float:
    return sum(_flatten_numeric(args))


def _builtin_avg(args: list[Any]) -> int | float:
    nums = _flatten_numeric(args)
    if not nums:
        return 0
    return sum(nums) / len(nums)


def _builtin_min(args: list[Any]) -> int | float:
    nums = _flatten_numeric(args)
    if not nums:
        return 0
    return min(nums)


def _builtin_max(args: list[Any]) -> int | float:
    nums = _flatten_numeric(args)
    if not nums:
        return 0
    return max(nums)


def _builtin_count(args: list[Any]) -> int:
    """COUNT - counts every flattened entry, numeric or not."""
    return len(_flatten_numeric(args))


_BUILTINS: dict[str, Callable[[list[Any]], Any]] = {
    "SUM": _builtin_sum,
    "AVG": _builtin_avg,
    "MIN": _builtin_min,
    "MAX": _builtin_max,
    "COUNT": _builtin_count,
}


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with the aggregate builtins and can be extended with custom
    functions. Each function receives a single list of evaluated arguments.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[[list[Any]], Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[[list[Any]], Any]) -> None:
        self._functions[name.upper()] = func

    def get(self, name: str) -> Callable[[list[Any]], Any] | None:
        return self._functions.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())

    def as_dict(self) -> dict[str, Callable[[list[Any]], Any]]:
        """Copy of the name -> function table, for building an environment."""
        return dict(self._functions)
