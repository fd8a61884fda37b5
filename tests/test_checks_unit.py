"""Tests for satisfiability checks, display formatting and template lint."""

import math

import pytest

from reciplier.checks import (
    bounds_satisfied,
    contradictions,
    equations_satisfied,
    format_num,
    is_cell_violated,
    residuals,
    symbol_table,
    tolerance,
    violated_cell_ids,
)
from reciplier.parser import parse_cell, parse_template


def test_tolerance() -> None:
    assert tolerance(100, 1e-6) == pytest.approx(101e-6)
    assert tolerance(-2, 0.1, 0) == pytest.approx(0.2)
    assert tolerance(0) == pytest.approx(1e-9)


@pytest.mark.parametrize(
    "value,expected",
    [
        (3.00001, "3"),
        (2.5, "2.5"),
        (1 / 3, "0.3333"),
        (1234.56789, "1234.5679"),
        (-0.4, "-0.4"),
        (-0.00001, "0"),
        (-0.0002, "-0.0002"),
        (100.0, "100"),
        (math.nan, "?"),
        (math.inf, "?"),
        (None, "?"),
    ],
)
def test_format_num(value, expected: str) -> None:
    assert format_num(value) == expected


# ── Equations ────────────────────────────────────────────────────────────

class TestEquationsSatisfied:
    def test_satisfied(self):
        assert equations_satisfied([["x", 5], ["y", "2x"]], {"x": 5, "y": 10}) is True

    def test_unsatisfied(self):
        assert equations_satisfied([["x", 5]], {"x": 5.1}) is False

    def test_relative_tolerance(self):
        assert equations_satisfied([["x", 1e6]], {"x": 1e6 + 0.5}) is True

    def test_single_term_equations_are_skipped(self):
        assert equations_satisfied([["x"]], {}) is True

    def test_missing_variable(self):
        assert equations_satisfied([["x", "y"]], {"x": 1}) is False

    def test_nan_is_unsatisfied(self):
        assert equations_satisfied([["x", "x"]], {"x": math.nan}) is False


def test_bounds_satisfied() -> None:
    bounds = ({"h": 0.0}, {"h": 1.0})
    assert bounds_satisfied({"h": 0.5}, bounds) is True
    assert bounds_satisfied({"h": 2.0}, bounds) is False
    assert bounds_satisfied({}, bounds) is False
    assert bounds_satisfied({"h": 2.0}, ({}, {})) is True


def test_residuals() -> None:
    out = residuals([["x", 5], ["y"], ["z", "q"]], {"x": 3, "z": 1})
    assert out[0] == pytest.approx(2.0)
    assert out[1] == 0.0
    assert math.isnan(out[2])


class TestContradictions:
    def test_message_uses_label(self):
        msgs = contradictions([["x", 5.0]], {"x": 6}, ["{x = 5}"])
        assert msgs == ["Contradiction: {x = 5} evaluates to 6 ≠ 5"]

    def test_default_label(self):
        msgs = contradictions([["x", "y"]], {"x": 1, "y": 2})
        assert msgs == ["Contradiction: {x = y} evaluates to 1 ≠ 2"]

    def test_display_rounding_is_not_a_contradiction(self):
        assert contradictions([["x", 1.40231]], {"x": 1.40232}) == []

    def test_unevaluable_equations_are_skipped(self):
        assert contradictions([["x", "y"]], {"x": 1}) == []


# ── Cells ────────────────────────────────────────────────────────────────

class TestCellViolation:
    def test_no_numeral_is_never_violated(self):
        assert is_cell_violated({"cval": None, "ceqn": ["x"]}, {}) is False

    def test_nan_numeral_is_always_violated(self):
        assert is_cell_violated({"cval": math.nan, "ceqn": []}, {}) is True

    def test_pegged_cell(self):
        cell = parse_cell("x = 5")
        assert is_cell_violated(cell, {"x": 5}) is False
        assert is_cell_violated(cell, {"x": 6}) is True
        assert is_cell_violated(cell, {}) is True

    def test_inequality_bounds(self):
        cell = parse_cell("0 < x < 10")
        assert is_cell_violated(dict(cell, cval=5.0), {"x": 5}) is False
        assert is_cell_violated(dict(cell, cval=15.0), {"x": 15}) is True
        assert is_cell_violated(dict(cell, cval=0.0), {"x": 0}) is True

    def test_violated_cell_ids(self):
        cells = parse_template("{x = 5} {y = 2} {z}")
        assert violated_cell_ids(cells, {"x": 5, "y": 3, "z": 0}) == ["cell_1"]


# ── Lint ─────────────────────────────────────────────────────────────────

def test_symbol_table() -> None:
    cells = parse_template("{a = 3x} {x = 2} {b : 1} {5} {x : 5 : 6}")
    symbols, errors = symbol_table(cells)
    assert symbols == {"a": ["cell_0"], "x": ["cell_0", "cell_1", "cell_4"], "b": ["cell_2"]}
    assert errors == [
        "Cell {5} is a bare number which doesn't make sense to put in a cell",
        "Cell {x : 5 : 6} has more than one colon",
        "Variable a in {a = 3x} not referenced in any other cell",
        "Variable b in {b : 1} not referenced in any other cell",
    ]


def test_symbol_table_counts_a_cell_once() -> None:
    _, errors = symbol_table(parse_template("{y = x + x^2}"))
    assert "Variable x in {y = x + x^2} not referenced in any other cell" in errors


@pytest.mark.parametrize(
    "template,message",
    [
        ("{5 = 6}", "Cell {5 = 6} has more than one numerical value"),
        ("{x : y = 5} {x}", "Cell {x : y = 5} has more than one expression after the colon"),
        ("{x : y} {x + y}", "Cell {x : y} has a colon but no constant specified after it"),
        ("{10 > x > 0}", "Inequalities must start and end with a constant"),
    ],
)
def test_symbol_table_cell_errors(template: str, message: str) -> None:
    _, errors = symbol_table(parse_template(template))
    assert message in errors
