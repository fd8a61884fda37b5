"""Tests for the hybrid numerical solver."""

import pytest

from reciplier.checks import equations_satisfied
from reciplier.numerical import solve

PYTHAGOREAN = [["x", 1], ["a", "3x"], ["b", "4x"], ["c"], ["v1", "a^2+b^2", "c^2"]]


def _approx(result: dict, expected: dict, abs_tol: float = 1e-6) -> None:
    for name, value in expected.items():
        assert result[name] == pytest.approx(value, abs=abs_tol), name


# ── Propagation ──────────────────────────────────────────────────────────

class TestPropagation:
    def test_single_pin(self):
        _approx(solve([["x", 5]], {"x": 1}), {"x": 5}, abs_tol=1e-2)

    def test_pythagorean_chain(self):
        result = solve(PYTHAGOREAN, {"x": 1, "a": 1, "b": 1, "c": 1, "v1": 1})
        _approx(result, {"x": 1, "a": 3, "b": 4, "c": 5, "v1": 25})
        assert equations_satisfied(PYTHAGOREAN, result)

    def test_back_solve_from_derived_value(self):
        eqns = [["a", 30], ["a", "3x"], ["b", "4x"], ["c"], ["v1", "a^2+b^2", "c^2"]]
        result = solve(eqns, {"x": 1, "a": 30, "b": 1, "c": 1, "v1": 1})
        _approx(result, {"x": 10, "a": 30, "b": 40, "c": 50, "v1": 2500})

    def test_mixed_unknowns(self):
        eqns = [["var01", "x"], ["var02", "y"], ["var03", 33, "2*x + 3*y"],
                ["var04", "x"], ["var05", "y"], ["var06", 2, "5*x - 4*y"]]
        seeds = {"var01": 6, "var02": None, "var03": 33, "var04": None,
                 "var05": None, "var06": 2, "x": None, "y": None}
        _approx(solve(eqns, seeds), {"var01": 6, "var02": 7, "x": 6, "y": 7})

    def test_newton_finds_positive_root(self):
        _approx(solve([["y", 9], ["y", "x^2"]], {"y": None, "x": None}), {"x": 3, "y": 9})

    def test_copies_between_bare_variables(self):
        _approx(solve([["x", "y"], ["y", "x"]], {"x": 1, "y": None}), {"x": 1, "y": 1})


# ── Conflicts and refinement ─────────────────────────────────────────────

class TestConflicts:
    def test_first_hard_assertion_wins(self):
        eqns = [["sum", "x+y"], ["sum", 10], ["sum", 20]]
        result = solve(eqns, {"x": 0, "y": 0, "sum": 0})
        assert result["sum"] == 10
        assert result["x"] + result["y"] == pytest.approx(10, abs=0.5)
        assert equations_satisfied(eqns, result) is False

    def test_dependency_follows_free_variable(self):
        result = solve([["a", "3x"]], {"a": 1, "x": 2})
        _approx(result, {"a": 6, "x": 2})

    def test_gradient_refinement(self):
        eqns = [["x + y", 10], ["x - y", 2]]
        result = solve(eqns, {"x": 1, "y": 1})
        _approx(result, {"x": 6, "y": 4}, abs_tol=0.05)


# ── Inputs and settings ──────────────────────────────────────────────────

class TestInputs:
    def test_idempotent_on_own_output(self):
        seeds = {"x": 1, "a": 1, "b": 1, "c": 1, "v1": 1}
        first = solve(PYTHAGOREAN, seeds)
        second = solve(PYTHAGOREAN, first)
        for name, value in first.items():
            assert second[name] == pytest.approx(value, abs=1e-9)

    def test_variables_missing_from_initial_values(self):
        result = solve([["x", 2], ["y", "x + 1"]], {})
        _approx(result, {"x": 2, "y": 3})

    def test_unparseable_term_does_not_raise(self):
        result = solve([["x", 2], ["y", "x +"]], {"x": 1, "y": 1})
        assert result["x"] == 2

    def test_returns_floats(self):
        result = solve([["x", 5]], {"x": 1})
        assert type(result["x"]) is float

    def test_settings_override(self):
        eqns = [["sum", "x+y"], ["sum", 10], ["sum", 20]]
        result = solve(eqns, {"x": 0, "y": 0, "sum": 0}, {"max_iterations": 5})
        assert result["sum"] == 10

    def test_unknown_setting(self):
        with pytest.raises(ValueError, match="Unknown solver setting"):
            solve([["x", 5]], {"x": 1}, {"learning_rate": 0.1})


# ── Bounds ───────────────────────────────────────────────────────────────

class TestBounds:
    def test_newton_root_stays_in_bounds(self):
        result = solve([["x^2", 4]], {"x": -3}, bounds=({"x": 0.0}, {"x": 10.0}))
        _approx(result, {"x": 2})

    def test_without_bounds_nearest_root_wins(self):
        result = solve([["x^2", 4]], {"x": -3})
        _approx(result, {"x": -2})

    def test_neutral_seed_clamped(self):
        result = solve([["y", "2x"]], {"x": None, "y": None},
                       bounds=({"x": 3.0}, {"x": 5.0}))
        assert 3.0 <= result["x"] <= 5.0
        assert result["y"] == pytest.approx(2 * result["x"])

    def test_gradient_steps_stay_in_bounds(self):
        result = solve([["x + y", 10]], {"x": 1, "y": 1},
                       bounds=({"x": 0.0}, {"x": 2.0}))
        assert 0.0 <= result["x"] <= 2.0
        assert result["x"] + result["y"] == pytest.approx(10, abs=0.05)

    def test_literal_pin_is_not_clamped(self):
        result = solve([["h", 2]], {"h": 0.5}, bounds=({"h": 0.0}, {"h": 1.0}))
        assert result["h"] == 2
