"""Cell text classification and formula preprocessing.

Formulas are scanned with regexes for bare cell references and ``A1:B5``
range tokens. Range tokens are rewritten to ``RANGE("A1:B5")`` calls so the
expression grammar never sees ``:`` as an operator.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

from sheetcalc._utils import expand_range

# ---------------------------------------------------------------------------
# Numeric text
# ---------------------------------------------------------------------------

# Optional surrounding whitespace, optional single leading minus, integer part,
# optional decimal part. No exponent, no '+', no thousands separators.
_NUMERIC_RE = re.compile(r"\s*-?[0-9]+(?:\.[0-9]+)?\s*")


def is_numeric_string(text: str) -> bool:
    return _NUMERIC_RE.fullmatch(text) is not None


def parse_number(text: str) -> int | float:
    """Parse text already known to satisfy :func:`is_numeric_string`."""
    stripped = text.strip()
    if "." in stripped:
        return float(stripped)
    return int(stripped)


def to_number(value: object) -> int | float:
    """Coerce a cell or argument value to a number.

    Numbers pass through, numeric-looking strings are parsed, anything else
    (other text, None) counts as 0.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str) and is_numeric_string(value):
        return parse_number(value)
    return 0


# ---------------------------------------------------------------------------
# Cell content classification
# ---------------------------------------------------------------------------


class CellKind(enum.Enum):
    """What a cell's raw text holds."""

    EMPTY = "empty"
    LITERAL = "literal"  # leading apostrophe, forced text
    FORMULA = "formula"  # leading '='
    NUMBER = "number"
    TEXT = "text"


@dataclass(frozen=True)
class CellContent:
    kind: CellKind
    text: str = ""  # literal text, formula body, or raw text
    number: int | float | None = None


def classify_cell(raw: str) -> CellContent:
    """Classify raw cell text into a :class:`CellContent`."""
    if not raw:
        return CellContent(CellKind.EMPTY)
    if raw.startswith("'"):
        return CellContent(CellKind.LITERAL, raw[1:])
    if raw.startswith("="):
        return CellContent(CellKind.FORMULA, raw[1:])
    if is_numeric_string(raw):
        return CellContent(CellKind.NUMBER, raw, parse_number(raw))
    return CellContent(CellKind.TEXT, raw)


# ---------------------------------------------------------------------------
# Regex patterns for reference extraction
# ---------------------------------------------------------------------------

_CELL_REF = r"[A-Za-z]+[1-9][0-9]*"

# Bare refs: A1, b12, ZZ100. Range endpoints match too.
_SINGLE_REF_RE = re.compile(rf"\b({_CELL_REF})\b", re.ASCII)

# Range: A1:B5
_RANGE_REF_RE = re.compile(rf"({_CELL_REF}:{_CELL_REF})", re.ASCII)

# Function names: SUM(...), RANGE(...)
_FUNC_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_.]*)\s*\(", re.ASCII)

# Strings in formulas (to skip names inside string literals)
_STRING_RE = re.compile(r'"[^"]*"')


def _strip_strings(body: str) -> str:
    return _STRING_RE.sub("", body)


@dataclass(frozen=True)
class PreprocessedFormula:
    """A formula body ready for the expression grammar."""

    body: str  # rewritten text, ranges replaced by RANGE("...") calls
    references: tuple[str, ...]  # distinct uppercased bare refs
    ranges: tuple[str, ...]  # distinct uppercased range tokens

    def dependencies(self) -> list[str]:
        """Bare references followed by every range member, deduplicated."""
        deps = dict.fromkeys(self.references)
        for rng in self.ranges:
            deps.update(dict.fromkeys(expand_range(rng)))
        return list(deps)


def parse_references(body: str) -> list[str]:
    """Extract distinct bare cell references, uppercased, in order of appearance.

    Range endpoints are included: ``SUM(A1:A3)`` yields ``["A1", "A3"]``.
    """
    refs = dict.fromkeys(m.group(1).upper() for m in _SINGLE_REF_RE.finditer(body))
    return list(refs)


def parse_range_references(body: str) -> list[str]:
    """Extract distinct range tokens, uppercased, in order of appearance."""
    ranges = dict.fromkeys(m.group(1).upper() for m in _RANGE_REF_RE.finditer(body))
    return list(ranges)


def parse_functions(body: str) -> list[str]:
    """Extract distinct function names called in a formula body, uppercased.

    Names inside string literals are ignored.
    """
    funcs = dict.fromkeys(m.group(1).upper() for m in _FUNC_RE.finditer(_strip_strings(body)))
    return list(funcs)


def preprocess_formula(body: str) -> PreprocessedFormula:
    """Collect references and rewrite range tokens in a formula body.

    *body* is the formula text without its leading ``=``. The rewrite is a
    single left-to-right pass; its output is not re-scanned.
    """
    references = parse_references(body)
    ranges = parse_range_references(body)
    rewritten = _RANGE_REF_RE.sub(
        lambda m: f'RANGE("{m.group(1).upper()}")',
        body,
    )
    return PreprocessedFormula(rewritten, tuple(references), tuple(ranges))


def all_references(body: str) -> list[str]:
    """Every cell a formula body reads: bare refs plus expanded range members."""
    return preprocess_formula(body).dependencies()
