"""Expression evaluator for Reciplier cells."""

"""
Turns the algebra authors type into cells (``2x + 3``, ``a^2 + b^2``,
``sqrt(c)``, ``unixtime(2024, 2, 29)``) into compiled NumPy functions.

Parsing goes through SymPy's ``parse_expr`` with evaluation switched off so
the expression is kept exactly as written, then ``lambdify`` generates a
NumPy-backed callable.  Undefined arithmetic (0/0, sqrt of a negative) comes
back as NaN rather than raising; only structural problems are errors.
"""

import keyword
import math
import re
from functools import lru_cache
from typing import Callable, NamedTuple, Optional

import numpy as np
import sympy
from sympy import Function, Symbol, lambdify
from sympy.parsing.sympy_parser import parse_expr, standard_transformations


class ExpressionSyntaxError(ValueError):
    """Raised when an expression cannot be parsed into a numeric formula."""


class CalendarError(ValueError):
    """Raised by :func:`epoch_seconds` for out-of-range calendar fields."""


# Function names authors may call inside cells.
RESERVED_FUNCTIONS = (
    'sqrt', 'sin', 'cos', 'tan', 'asin', 'acos', 'atan',
    'log', 'exp', 'abs', 'floor', 'ceil', 'round', 'min', 'max',
)
# In-expression name of the calendar helper.
CALENDAR_FUNCTION = 'unixtime'
RESERVED_WORDS = frozenset(RESERVED_FUNCTIONS + (CALENDAR_FUNCTION,))

_IDENT_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
_BARE_IDENT_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_NUMERAL = r'(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?'
# A numeral that is not the tail of an identifier or of another numeral.
_STANDALONE_NUMERAL_RE = re.compile(r'(?<![\w.])' + _NUMERAL)
_NUMBER_LITERAL_RE = re.compile(r'^[+-]?' + _NUMERAL + r'$')

# Private-use character that guards meaningful zeros in fix_leading_zeros.
_ZERO_GUARD = '\ue000'
# Zeros after a nonzero digit, letter, underscore or decimal point, and any
# zero that ends a digit run, carry meaning.  Every other zero is leading.
_MEANINGFUL_ZEROS_RE = re.compile(r'(?<=[1-9A-Za-z_.])0+|0(?!\d)')

_KEYWORD_SUFFIX = '_reciplier_kw'


# ── Calendar helper ─────────────────────────────────────────────────────

def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


_MONTH_DAYS = (31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)


def _days_in_month(year: int, month: int) -> int:
    if month == 2 and _is_leap(year):
        return 29
    return _MONTH_DAYS[month - 1]


def _calendar_field(label: str, value) -> int:
    if isinstance(value, (bool, np.bool_)) or not isinstance(
            value, (int, float, np.integer, np.floating)):
        raise CalendarError(f"epoch_seconds: invalid {label}: {value!r}")
    if not math.isfinite(value) or value != int(value):
        raise CalendarError(f"epoch_seconds: invalid {label}: {value!r}")
    return int(value)


def _days_from_civil(year: int, month: int, day: int) -> int:
    """Days since 1970-01-01 in the proleptic Gregorian calendar."""
    year -= month <= 2
    era = year // 400
    yoe = year - era * 400
    doy = (153 * ((month + 9) % 12) + 2) // 5 + day - 1
    doe = yoe * 365 + yoe // 4 - yoe // 100 + doy
    return era * 146097 + doe - 719468


def epoch_seconds(year, month, day) -> float:
    """Return UTC seconds since the Unix epoch for midnight of the given date.

    Raises CalendarError for non-numeric or non-integral fields, a month
    outside 1..12, or a day past the end of the month.
    """
    y = _calendar_field('year', year)
    m = _calendar_field('month', month)
    d = _calendar_field('day', day)
    if not 1 <= m <= 12:
        raise CalendarError(f"epoch_seconds: invalid month: {month!r}")
    if not 1 <= d <= _days_in_month(y, m):
        raise CalendarError(f"epoch_seconds: invalid day: {day!r} ({y}-{m:02d})")
    return float(_days_from_civil(y, m, d) * 86400)


# ── Reserved function table ─────────────────────────────────────────────

def _round_half_up(x):
    return np.floor(x + 0.5)


def _minimum(*args):
    return np.min(args) if args else math.inf


def _maximum(*args):
    return np.max(args) if args else -math.inf


_NUMPY_FUNCTIONS = {
    'sqrt': np.sqrt,
    'sin': np.sin,
    'cos': np.cos,
    'tan': np.tan,
    'asin': np.arcsin,
    'acos': np.arccos,
    'atan': np.arctan,
    'log': np.log,
    'exp': np.exp,
    'abs': np.abs,
    'floor': np.floor,
    'ceil': np.ceil,
    'round': _round_half_up,
    'min': _minimum,
    'max': _maximum,
    CALENDAR_FUNCTION: epoch_seconds,
}


# ── String-level rewriting ──────────────────────────────────────────────

def _insert_multiplication(m) -> str:
    rest = m.string[m.end():].lstrip()
    if rest and (rest[0].isalpha() or rest[0] in '_('):
        return m.group(0) + '*'
    return m.group(0)


def normalize(expr: str) -> str:
    """Rewrite author-friendly algebra into Python expression syntax.

    - ``2x`` → ``2*x`` and ``2(x+1)`` → ``2*(x+1)`` (identifiers such as
      ``x2a`` and numerals such as ``1e-5`` are left intact)
    - ``^`` → ``**``

    Raises ExpressionSyntaxError on empty or whitespace-only input.
    """
    if not isinstance(expr, str) or expr.strip() == '':
        raise ExpressionSyntaxError(f"Invalid expression: {expr!r}")
    s = _STANDALONE_NUMERAL_RE.sub(_insert_multiplication, expr)
    return s.replace('^', '**')


def fix_leading_zeros(text: str) -> str:
    """Drop leading zeros from numerals so ``010`` reads as ten.

    ``000`` becomes ``0``; ``0.5``, ``100`` and ``var01`` are unchanged.
    Raises ValueError if *text* already contains the private guard character.
    """
    if _ZERO_GUARD in text:
        raise ValueError("Expression contains a reserved private-use character")
    guarded = _MEANINGFUL_ZEROS_RE.sub(
        lambda m: _ZERO_GUARD * len(m.group(0)), text)
    return guarded.replace('0', '').replace(_ZERO_GUARD, '0')


# ── Identifier helpers ──────────────────────────────────────────────────

def referenced_variables(expr) -> list:
    """Return the sorted distinct identifiers in *expr*, minus reserved words."""
    if not isinstance(expr, str) or expr.strip() == '':
        return []
    without_numerals = _STANDALONE_NUMERAL_RE.sub(' ', expr)
    names = set(_IDENT_RE.findall(without_numerals))
    return sorted(names - RESERVED_WORDS)


def is_bare_identifier(token) -> bool:
    return isinstance(token, str) and bool(_BARE_IDENT_RE.match(token.strip()))


def to_number(text) -> Optional[float]:
    """Parse a plain numeric literal (``42``, ``-3.14``, ``1e-5``) or return None."""
    if not isinstance(text, str):
        return None
    s = text.strip()
    if not _NUMBER_LITERAL_RE.match(s):
        return None
    value = float(s)
    return value if math.isfinite(value) else None


def _safe_name(name: str) -> str:
    # Python keywords (in, as, lambda, ...) are legal variable names in cells.
    return name + _KEYWORD_SUFFIX if keyword.iskeyword(name) else name


# ── Compilation ─────────────────────────────────────────────────────────

class CompiledExpression(NamedTuple):
    """An expression compiled to a NumPy callable over its free variables."""

    source: str
    variables: tuple
    func: Callable

    def __call__(self, *args) -> float:
        """Evaluate with positional values ordered like ``variables``.

        Arithmetic failures become NaN; calendar errors propagate.
        """
        try:
            value = self.func(*args)
        except ArithmeticError:
            return math.nan
        return _to_float(value)


def _to_float(value) -> float:
    if isinstance(value, complex):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return math.nan


@lru_cache(maxsize=4096)
def compile_expression(expr: str) -> CompiledExpression:
    """Parse *expr* once and return a :class:`CompiledExpression`.

    Raises ExpressionSyntaxError when the text is not a numeric formula.
    """
    source = fix_leading_zeros(normalize(expr))
    names = referenced_variables(source)

    local = {name: Function(name) for name in RESERVED_WORDS}
    var_symbols = []
    for name in names:
        sym = Symbol(name)
        local[_safe_name(name)] = sym
        var_symbols.append(sym)
    text = _IDENT_RE.sub(lambda m: _safe_name(m.group(0)), source)

    try:
        parsed = parse_expr(text, local_dict=local,
                            transformations=standard_transformations,
                            evaluate=False)
    except Exception as e:
        raise ExpressionSyntaxError(
            f"Could not parse expression: '{expr}'. Error: {e}")
    if not isinstance(parsed, sympy.Expr):
        raise ExpressionSyntaxError(f"Not a numeric expression: '{expr}'")

    try:
        func = lambdify(var_symbols, parsed, modules=[_NUMPY_FUNCTIONS, 'numpy'])
    except Exception as e:
        raise ExpressionSyntaxError(
            f"Could not compile expression: '{expr}'. Error: {e}")
    return CompiledExpression(source, tuple(names), func)


# ── Evaluation ──────────────────────────────────────────────────────────

class EvalResult(NamedTuple):
    value: Optional[float]
    error: Optional[str]


def _binding(value) -> np.float64:
    # None means "unknown", never zero.
    if value is None:
        return np.float64(math.nan)
    try:
        return np.float64(value)
    except (TypeError, ValueError, OverflowError):
        return np.float64(math.nan)


def evaluate(expr, bindings: Optional[dict] = None) -> EvalResult:
    """Evaluate *expr* under *bindings* (name → number, None or NaN).

    Returns ``EvalResult(value, error)``.  ``value`` is NaN for undefined
    arithmetic; ``error`` is set only when the expression cannot be parsed
    or uses an identifier that has no binding.
    """
    if isinstance(expr, (int, float, np.integer, np.floating)) and not isinstance(expr, bool):
        return EvalResult(_to_float(expr), None)
    if not isinstance(expr, str):
        return EvalResult(None, f"Invalid expression: {expr!r}")
    try:
        compiled = compile_expression(expr)
    except ValueError as e:
        return EvalResult(None, str(e))

    bindings = bindings or {}
    missing = [name for name in compiled.variables if name not in bindings]
    if missing:
        return EvalResult(None, f"{missing[0]} is not defined")

    args = [_binding(bindings[name]) for name in compiled.variables]
    with np.errstate(all='ignore'):
        try:
            return EvalResult(compiled(*args), None)
        except (CalendarError, TypeError) as e:
            return EvalResult(None, str(e))


def is_constant_expression(expr) -> bool:
    """True if *expr* has no free variables and evaluates to a finite number."""
    if isinstance(expr, str) and referenced_variables(expr):
        return False
    r = evaluate(expr, {})
    return r.error is None and r.value is not None and math.isfinite(r.value)
