"""Hybrid numerical solver for Reciplier equation systems."""

"""
Solves a list of equations, each a list of terms that must all be equal
(``[["x", 1], ["a", "3x"], ["v1", "a^2+b^2", "c^2"]]``), starting from an
initial assignment.  Three stages run in order:

1. Algebraic propagation: literals pin variables, bare variables copy the
   strongest term of their equation, and a single unknown inside an
   expression is found by Newton's method.
2. Gap filling and dependency links: ``a = 3x`` keeps ``a`` derived from
   ``x`` for the rest of the solve.
3. RMSProp gradient descent on the total squared residual over the
   variables that are neither pinned nor derived.

Every variable carries a strength: 0 unknown, 1 weak (initial value),
2 derived, 3 hard (literal or pinned).  A stronger value always wins and
pinned variables never change again, so the first hard assertion in
equation order wins a conflict.
"""

import logging
import math
from typing import Callable, NamedTuple, Optional

import numpy as np

from reciplier.config import TOL_TIGHT, solver_settings
from reciplier.matheval import (
    ExpressionSyntaxError,
    compile_expression,
    is_bare_identifier,
    referenced_variables,
)

logger = logging.getLogger(__name__)

HARD = 3


# ── Terms ───────────────────────────────────────────────────────────────

class _Term(NamedTuple):
    constant: Optional[float]   # set for literal numerals
    idx: tuple                  # value indices of the free variables
    func: Optional[Callable]    # None when the text does not compile
    bare: Optional[int]         # value index when the term is a lone variable


def _is_literal(term) -> bool:
    return isinstance(term, (int, float, np.integer, np.floating)) and not isinstance(term, bool)


def _variable_names(equations: list, initial_vars: dict) -> list:
    names = list(initial_vars)
    seen = set(names)
    for eqn in equations:
        for term in eqn:
            if _is_literal(term):
                continue
            for name in referenced_variables(str(term)):
                if name not in seen:
                    seen.add(name)
                    names.append(name)
    return names


def _compile_term(term, index: dict) -> _Term:
    if _is_literal(term):
        return _Term(float(term), (), None, None)
    text = str(term)
    try:
        compiled = compile_expression(text)
        names = compiled.variables
        func = compiled
    except (ExpressionSyntaxError, ValueError):
        names = referenced_variables(text)
        func = None
    bare = index[text.strip()] if is_bare_identifier(text) and text.strip() in index else None
    return _Term(None, tuple(index[n] for n in names), func, bare)


def _value(term: _Term, values: np.ndarray) -> float:
    if term.constant is not None:
        return term.constant
    if term.func is None:
        return math.nan
    try:
        return term.func(*(values[i] for i in term.idx))
    except (ValueError, TypeError):
        return math.nan


def _initial_value(value) -> float:
    if value is None or isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return math.nan


# ── Solver ──────────────────────────────────────────────────────────────

class _Solver:
    """State of one solve: values, strengths, pins and dependency links."""

    def __init__(self, equations: list, initial_vars: dict, settings: dict,
                 bounds: tuple = None):
        self.settings = settings
        self.names = _variable_names(equations, initial_vars)
        index = {name: i for i, name in enumerate(self.names)}
        self.system = [[_compile_term(t, index) for t in eqn] for eqn in equations]

        self.values = np.array(
            [_initial_value(initial_vars.get(name)) for name in self.names],
            dtype=float)
        inf, sup = bounds if bounds is not None else ({}, {})
        self.lo = np.array([inf.get(name, -math.inf) for name in self.names], dtype=float)
        self.hi = np.array([sup.get(name, math.inf) for name in self.names], dtype=float)
        self.values = np.clip(self.values, self.lo, self.hi)
        self.strength = [1 if math.isfinite(v) else 0 for v in self.values]
        self.pinned = set()
        self.dependencies = {}   # var index → (equation index, term index)

    def _clamp(self, i: int, value: float) -> float:
        return min(max(value, self.lo[i]), self.hi[i])

    # ── Stage 1: propagation ────────────────────────────────────────

    def _anchor(self, terms: list, current: list) -> tuple:
        anchor_val, anchor_h = math.nan, 0
        for term, val in zip(terms, current):
            if term.constant is not None:
                return term.constant, HARD
            if math.isfinite(val):
                h = min((self.strength[i] for i in term.idx), default=HARD)
                if h > anchor_h:
                    anchor_val, anchor_h = val, h
        return anchor_val, anchor_h

    def _pin_or_promote(self, i: int, h: int) -> None:
        self.strength[i] = h
        if h == HARD:
            self.pinned.add(i)
            self.dependencies.pop(i, None)

    def _update_bare(self, eq_idx: int, term_idx: int, terms: list,
                     anchor_val: float, anchor_h: int) -> bool:
        i = terms[term_idx].bare
        if len(terms) == 2 and i not in self.dependencies and i not in self.pinned:
            other_idx = 1 - term_idx
            other = terms[other_idx]
            if other.constant is None and other.bare is None and i not in other.idx:
                self.dependencies[i] = (eq_idx, other_idx)

        if anchor_h == 0 or i in self.pinned:
            return False
        current = self.values[i]
        if (math.isnan(current) or anchor_h > self.strength[i]
                or (anchor_h == self.strength[i]
                    and abs(current - anchor_val) > TOL_TIGHT)):
            self.values[i] = anchor_val
            self._pin_or_promote(i, anchor_h)
            return True
        return False

    def _newton(self, term: _Term, target: int, anchor_val: float) -> bool:
        s = self.settings
        original = self.values[target]
        guess = 0.1 if math.isnan(original) else float(original)
        if abs(guess) < TOL_TIGHT:
            guess = 0.1
        guess = self._clamp(target, guess)

        d = s["newton_delta"]
        for _ in range(s["newton_iterations"]):
            self.values[target] = guess
            y1 = _value(term, self.values)
            self.values[target] = guess + d
            y2 = _value(term, self.values)
            slope = (y2 - y1) / d
            if not math.isfinite(slope) or abs(slope) < TOL_TIGHT:
                break
            step = self._clamp(target, guess - (y1 - anchor_val) / slope)
            if not math.isfinite(step):
                break
            if abs(step - guess) < TOL_TIGHT:
                guess = step
                break
            guess = step

        self.values[target] = guess
        check = _value(term, self.values)
        if abs(check - anchor_val) < s["newton_accept"]:
            return True
        self.values[target] = original
        return False

    def _update_expression(self, term: _Term, anchor_val: float, anchor_h: int) -> bool:
        nans = [i for i in term.idx if math.isnan(self.values[i])]
        if len(nans) == 1:
            target = nans[0]
        elif not nans:
            weak = [i for i in term.idx if self.strength[i] < anchor_h]
            if len(weak) != 1:
                return False
            target = weak[0]
        else:
            return False

        if target in self.dependencies or target in self.pinned:
            return False
        if self._newton(term, target, anchor_val):
            self._pin_or_promote(target, anchor_h)
            return True
        return False

    def propagate(self) -> int:
        passes = 0
        for passes in range(1, self.settings["pass_factor"] * len(self.names) + 1):
            changed = False
            for eq_idx, terms in enumerate(self.system):
                current = [_value(t, self.values) for t in terms]
                anchor_val, anchor_h = self._anchor(terms, current)
                for term_idx, term in enumerate(terms):
                    if term.bare is not None:
                        changed |= self._update_bare(eq_idx, term_idx, terms,
                                                     anchor_val, anchor_h)
                    elif anchor_h > 0 and term.constant is None:
                        changed |= self._update_expression(term, anchor_val, anchor_h)
            if not changed:
                break
        return passes

    # ── Stage 2: gaps and dependency links ──────────────────────────

    def fill_gaps(self) -> None:
        gaps = np.isnan(self.values)
        self.values[gaps] = np.clip(self.settings["neutral_seed"], self.lo[gaps], self.hi[gaps])

    def enforce_dependencies(self) -> None:
        if not self.dependencies:
            return
        for _ in range(self.settings["dependency_passes"]):
            changed = False
            for i, (eq_idx, term_idx) in self.dependencies.items():
                if i in self.pinned:
                    continue
                val = _value(self.system[eq_idx][term_idx], self.values)
                if math.isfinite(val) and abs(self.values[i] - val) > TOL_TIGHT:
                    self.values[i] = val
                    changed = True
            if not changed:
                break

    # ── Stage 3: gradient refinement ────────────────────────────────

    def total_error(self) -> float:
        error = 0.0
        for terms in self.system:
            vals = [_value(t, self.values) for t in terms]
            for a, b in zip(vals, vals[1:]):
                error += (a - b) ** 2
        return error

    def refine(self) -> tuple:
        s = self.settings
        free = [i for i in range(len(self.names))
                if i not in self.pinned and i not in self.dependencies]
        cache = np.zeros(len(self.names))
        delta = s["delta"]

        iteration, error = 0, math.nan
        for iteration in range(1, s["max_iterations"] + 1):
            self.enforce_dependencies()
            error = self.total_error()
            if error < s["epsilon"] or not free:
                break

            steps = {}
            for i in free:
                original = self.values[i]
                self.values[i] = original + delta
                self.enforce_dependencies()
                error_plus = self.total_error()
                self.values[i] = original
                self.enforce_dependencies()

                grad = (error_plus - error) / delta
                if not math.isfinite(grad):
                    continue
                cache[i] = s["decay"] * cache[i] + (1 - s["decay"]) * grad * grad
                step = s["learn_rate"] * grad / (math.sqrt(cache[i]) + 1e-8)
                step = max(-s["step_clip"], min(s["step_clip"], step))
                if step != 0.0:
                    steps[i] = step

            moved = False
            for i, step in steps.items():
                new = self._clamp(i, self.values[i] - step)
                moved |= new != self.values[i]
                self.values[i] = new
            # Fixed point: later iterations would repeat this one.
            if not moved:
                break

        self.enforce_dependencies()
        return iteration, error

    def result(self) -> dict:
        return {name: float(self.values[i]) for i, name in enumerate(self.names)}


def solve(equations: list, initial_vars: dict, settings: dict = None,
          bounds: tuple = None) -> dict:
    """
    Solve *equations* starting from *initial_vars* and return name → value.

    *equations* is a list of equations, each a list of terms (numbers or
    expression strings) that must all be equal.  *initial_vars* maps names
    to a starting value or None for unknown.  Every variable the equations
    mention is solved for, even when *initial_vars* does not name it.
    *settings* overrides entries of ``reciplier.config.SOLVER_SETTINGS``.

    *bounds* is an ``(inf, sup)`` pair of name → limit dicts.  Starting
    values, Newton roots and gradient steps stay inside them; values copied
    from a literal or another variable do not, so an out-of-range pin still
    shows up as unsatisfied.

    Contradictions are not errors: the first hard assertion in equation
    order wins and the result simply fails the satisfiability check.
    """
    solver = _Solver(equations, initial_vars or {}, solver_settings(settings), bounds)
    with np.errstate(all='ignore'):
        passes = solver.propagate()
        logger.debug("Propagation: %d pass(es), %d pinned, %d derived",
                     passes, len(solver.pinned), len(solver.dependencies))
        solver.fill_gaps()
        iterations, error = solver.refine()
    logger.debug("Refinement: %d iteration(s), residual %.3g", iterations, error)
    return solver.result()


if __name__ == "__main__":
    test_systems = [
        ("Single pin", [["x", 5]], {"x": 1}),
        ("Pythagorean chain",
         [["x", 1], ["a", "3x"], ["b", "4x"], ["c"], ["v1", "a^2+b^2", "c^2"]],
         {"x": 1, "a": 1, "b": 1, "c": 1, "v1": 1}),
        ("Back-solve from a = 30",
         [["a", 30], ["a", "3x"], ["b", "4x"], ["c"], ["v1", "a^2+b^2", "c^2"]],
         {"x": 1, "a": 30, "b": 1, "c": 1, "v1": 1}),
        ("Conflicting pins",
         [["sum", "x+y"], ["sum", 10], ["sum", 20]],
         {"x": 0, "y": 0, "sum": 0}),
    ]
    for title, eqns, seeds in test_systems:
        print(f"\n{'='*50}")
        print(f"Solving: {title}")
        print('=' * 50)
        solved = solve(eqns, seeds)
        for name, value in solved.items():
            print(f"  {name} = {value:.6g}")
