"""
Reciplier — Satisfiability checks and template diagnostics.

Everything here reads an assignment (name → value) produced by the solver and
reports how well the equations and cells hold under it.  None of these
functions raise on bad input: an expression that cannot be evaluated simply
counts as unsatisfied.
"""

import math
from typing import Optional

from reciplier.config import TOL_DISPLAY, TOL_SATISFIED, TOL_TIGHT
from reciplier.matheval import evaluate, referenced_variables


# ── Tolerances and formatting ───────────────────────────────────────────

def tolerance(value: float, rel_tol: float = 1e-9, abs_tol: Optional[float] = None) -> float:
    """Return ``|value| * rel_tol + abs_tol`` (``abs_tol`` defaults to ``rel_tol``)."""
    if abs_tol is None:
        abs_tol = rel_tol
    return abs(value) * rel_tol + abs_tol


def _is_finite_number(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def format_num(value) -> str:
    """Render *value* for display.

    - ``?`` for anything that is not a finite number
    - values within 1e-4 of an integer snap to it (``2.99999`` → ``3``)
    - otherwise at most 4 decimals, trailing zeros dropped
    """
    if not _is_finite_number(value):
        return '?'
    snapped = math.floor(value + 0.5)
    if abs(value - snapped) < TOL_DISPLAY:
        value = snapped
    s = f"{value:.4f}".rstrip('0').rstrip('.')
    return '0' if s == '-0' else s


def _term_values(eqn: list, assignment: dict) -> list:
    """Evaluate every term, with None for a failure or a non-finite value."""
    out = []
    for term in eqn:
        r = evaluate(term, assignment)
        out.append(r.value if r.error is None and _is_finite_number(r.value) else None)
    return out


# ── Equations ───────────────────────────────────────────────────────────

def equations_satisfied(eqns: list, assignment: dict) -> bool:
    """True if every equation's terms agree with its first term.

    Equations with fewer than two terms constrain nothing and are skipped.
    A term that fails to evaluate, or evaluates to NaN or infinity, makes
    the whole system unsatisfied.
    """
    for eqn in eqns:
        if len(eqn) < 2:
            continue
        vals = _term_values(eqn, assignment)
        if any(v is None for v in vals):
            return False
        first = vals[0]
        tol = tolerance(first, TOL_SATISFIED, TOL_SATISFIED)
        if any(abs(v - first) > tol for v in vals[1:]):
            return False
    return True


def bounds_satisfied(assignment: dict, bounds: tuple) -> bool:
    """True if every bounded variable lies inside its ``(inf, sup)`` bounds."""
    inf, sup = bounds
    for name, lo in inf.items():
        val = assignment.get(name)
        if not _is_finite_number(val) or val < lo:
            return False
    for name, hi in sup.items():
        val = assignment.get(name)
        if not _is_finite_number(val) or val > hi:
            return False
    return True


def residuals(eqns: list, assignment: dict) -> list:
    """Per equation, the sum of squared deviations of its terms from their mean.

    Zero means satisfied; NaN means a term could not be evaluated.
    Single-term equations always report 0.
    """
    out = []
    for eqn in eqns:
        if len(eqn) < 2:
            out.append(0.0)
            continue
        vals = _term_values(eqn, assignment)
        if any(v is None for v in vals):
            out.append(math.nan)
            continue
        mean = sum(vals) / len(vals)
        out.append(sum((v - mean) ** 2 for v in vals))
    return out


def contradictions(eqns: list, assignment: dict, labels: Optional[list] = None) -> list:
    """Describe each equation whose terms visibly disagree.

    Returns messages such as ``Contradiction: {x = 5} evaluates to 6 ≠ 5``.
    *labels* names the source of each equation (see
    ``reciplier.equations.equation_labels``); by default the terms are
    joined with ``=``.  The tolerance is coarse enough that two values that
    format identically are never reported.
    """
    messages = []
    for i, eqn in enumerate(eqns):
        if len(eqn) < 2:
            continue
        vals = _term_values(eqn, assignment)
        if any(v is None for v in vals):
            continue
        first = vals[0]
        tol = tolerance(first, TOL_DISPLAY)
        if all(abs(v - first) <= tol for v in vals[1:]):
            continue
        if labels is not None and i < len(labels):
            label = labels[i]
        else:
            label = "{" + " = ".join(str(t) for t in eqn) + "}"
        shown = " ≠ ".join(format_num(v) for v in vals)
        messages.append(f"Contradiction: {label} evaluates to {shown}")
    return messages


# ── Cells ───────────────────────────────────────────────────────────────

def _outside_bounds(value: float, ineq: dict) -> bool:
    bound_tol = tolerance(value, TOL_TIGHT)
    inf, sup = ineq.get("inf"), ineq.get("sup")
    if _is_finite_number(inf):
        ok = value > inf + bound_tol if ineq.get("inf_strict") else value + bound_tol >= inf
        if not ok:
            return True
    if _is_finite_number(sup):
        ok = value < sup - bound_tol if ineq.get("sup_strict") else value - bound_tol <= sup
        if not ok:
            return True
    return False


def is_cell_violated(cell: dict, assignment: dict) -> bool:
    """True if the cell's numeral does not hold under *assignment*.

    A cell without a numeral (``cval`` None) asserts nothing and is never
    violated; a NaN numeral always is.  Otherwise the cell is violated when
    its inequality rejects the numeral or any ``ceqn`` term fails to
    evaluate or differs from it beyond tolerance.
    """
    cval = cell.get("cval")
    if cval is None:
        return False
    if not _is_finite_number(cval):
        return True
    if cell.get("ineq") and _outside_bounds(cval, cell["ineq"]):
        return True

    tol = tolerance(cval, TOL_SATISFIED)
    for term in cell.get("ceqn") or []:
        if not str(term).strip():
            continue
        r = evaluate(term, assignment)
        if r.error is not None or not _is_finite_number(r.value):
            return True
        if abs(r.value - cval) > tol:
            return True
    return False


def violated_cell_ids(cells: list, assignment: dict) -> list:
    """Ids of the violated cells, in source order."""
    return [cell["id"] for cell in cells if is_cell_violated(cell, assignment)]


# ── Lint ────────────────────────────────────────────────────────────────

def symbol_table(cells: list) -> tuple:
    """Collect the variables of *cells* and lint the template.

    Returns ``(symbols, errors)`` where ``symbols`` maps each variable to the
    ids of the cells that reference it and ``errors`` lists authoring
    problems: malformed cells and variables that appear in only one cell.
    None of these stop the solve.
    """
    symbols = {}
    errors = []

    if any(cell.get("ineq_error") for cell in cells):
        errors.append("Inequalities must start and end with a constant")

    for cell in cells:
        urtext = cell["urtext"]
        if cell.get("multiple_numbers"):
            errors.append(f"Cell {{{urtext}}} has more than one numerical value")
        colon_error = cell.get("colon_error")
        if colon_error == 'multi':
            errors.append(f"Cell {{{urtext}}} has more than one colon")
        elif colon_error == 'rhs':
            errors.append(f"Cell {{{urtext}}} has more than one expression after the colon")
        elif colon_error == 'noconst':
            errors.append(f"Cell {{{urtext}}} has a colon but no constant specified after it")
        if not cell.get("ceqn") and cell.get("cval") is not None:
            errors.append(f"Cell {{{urtext}}} is a bare number "
                          f"which doesn't make sense to put in a cell")

        cell_vars = set()
        for term in cell.get("ceqn") or []:
            cell_vars.update(referenced_variables(term))
        for name in sorted(cell_vars):
            symbols.setdefault(name, []).append(cell["id"])

    by_id = {cell["id"]: cell for cell in cells}
    for name, cell_ids in symbols.items():
        if len(cell_ids) == 1:
            urtext = by_id[cell_ids[0]]["urtext"]
            errors.append(f"Variable {name} in {{{urtext}}} not referenced in any other cell")

    return symbols, errors
