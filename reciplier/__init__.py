"""Reciplier: templates whose inline cells stay mutually consistent."""

from reciplier.checks import equations_satisfied, is_cell_violated
from reciplier.engine import process_template
from reciplier.matheval import (
    CalendarError,
    ExpressionSyntaxError,
    epoch_seconds,
    evaluate,
    is_bare_identifier,
    is_constant_expression,
    normalize,
    referenced_variables,
)
from reciplier.numerical import solve
from reciplier.parser import (
    check_brace_syntax,
    extract_cells,
    parse_cell,
    parse_inequalities,
)

__all__ = [
    "CalendarError",
    "ExpressionSyntaxError",
    "check_brace_syntax",
    "epoch_seconds",
    "equations_satisfied",
    "evaluate",
    "extract_cells",
    "is_bare_identifier",
    "is_cell_violated",
    "is_constant_expression",
    "normalize",
    "parse_cell",
    "parse_inequalities",
    "process_template",
    "referenced_variables",
    "solve",
]
