"""
Reciplier — Whole-template pipeline.

``process_template`` is the single entry point the HTTP adapter and the
command line call: brace check → cell parse → equation build → solve →
checks.  It is a pure function of its arguments; warm starting is done by
passing the previous ``assignment`` back in as ``values``.
"""

import json
import logging
import time
from datetime import datetime

import numpy as np
import sympy

from reciplier.checks import (
    bounds_satisfied,
    contradictions,
    equations_satisfied,
    format_num,
    is_cell_violated,
    residuals,
    symbol_table,
)
from reciplier.equations import (
    build_equations,
    effective_bounds,
    equation_labels,
    initial_values,
)
from reciplier.matheval import evaluate
from reciplier.numerical import solve
from reciplier.parser import check_brace_syntax, parse_template

logger = logging.getLogger(__name__)

__all__ = ["process_template", "cell_value", "format_num"]


# ── Helpers ─────────────────────────────────────────────────────────────

def _library() -> str:
    return f"SymPy {sympy.__version__}, NumPy {np.__version__}"


def _summary(t_start: float, cells: list, eqns: list, status: str) -> dict:
    return {
        "runtime_ms": round((time.perf_counter() - t_start) * 1000, 3),
        "total_cells": len(cells),
        "total_equations": len(eqns),
        "validation_status": status,
        "timestamp": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "library": _library(),
    }


def cell_value(cell: dict, assignment: dict):
    """The value a cell displays: its pegged numeral, else the mean of its terms.

    Terms that fail to evaluate are ignored; a cell with no usable term
    falls back to its colon numeral (or None).
    """
    if cell.get("pegged"):
        return cell["cval"]
    vals = []
    for term in cell.get("ceqn") or []:
        r = evaluate(term, assignment)
        if r.error is None and r.value is not None and np.isfinite(r.value):
            vals.append(r.value)
    if not vals:
        return cell.get("cval")
    return sum(vals) / len(vals)


def _log_failed_solve(eqns: list, seeds: dict, assignment: dict) -> None:
    logger.warning("Failed solve: solve(%s, %s) returned %s",
                   json.dumps(eqns), json.dumps(seeds), json.dumps(assignment))
    constraints = [f"{a} == {b}" for eqn in eqns for a, b in zip(eqn, eqn[1:])]
    logger.debug("As a system: Solve[{%s}, {%s}]",
                 ", ".join(constraints), ", ".join(sorted(seeds)))


# ── Pipeline ────────────────────────────────────────────────────────────

def process_template(text: str, values: dict = None, frozen: dict = None,
                     settings: dict = None) -> dict:
    """
    Parse, solve and check a template.

    - *values*: previous assignment to warm-start from.  Without it this is
      a first solve and colon values shape the result.
    - *frozen*: ``name → value`` pins applied on top of the template.
    - *settings*: solver overrides (see ``reciplier.config``).

    Returns a dict with: template, cells, equations, seeds, assignment,
    satisfied, residuals, cell_values, violated_cells, errors, summary.

    Raises ValueError if *text* is not a string or a frozen name is not a
    variable.
    """
    t_start = time.perf_counter()
    if not isinstance(text, str):
        raise ValueError("Template must be a string.")

    brace_errors = check_brace_syntax(text)
    if brace_errors:
        return {
            "template": text,
            "cells": [],
            "equations": [],
            "seeds": {},
            "assignment": {},
            "satisfied": False,
            "residuals": [],
            "cell_values": {},
            "violated_cells": [],
            "errors": brace_errors,
            "summary": _summary(t_start, [], [], "syntax_error"),
        }

    cells = parse_template(text)
    _, errors = symbol_table(cells)
    bounds = effective_bounds(cells)

    initial = not values
    eqns = build_equations(cells, frozen, initial=initial)
    labels = equation_labels(cells, frozen, initial=initial)
    seeds = initial_values(cells, bounds, previous=values)

    assignment = solve(eqns, seeds, settings, bounds)
    satisfied = equations_satisfied(eqns, assignment) and bounds_satisfied(assignment, bounds)
    if not satisfied:
        _log_failed_solve(eqns, seeds, assignment)
        errors.extend(contradictions(eqns, assignment, labels))

    cell_values = {cell["id"]: cell_value(cell, assignment) for cell in cells}
    violated = [cell["id"] for cell in cells
                if is_cell_violated(dict(cell, cval=cell_values[cell["id"]]), assignment)]

    result = {
        "template": text,
        "cells": cells,
        "equations": eqns,
        "seeds": seeds,
        "assignment": assignment,
        "satisfied": satisfied,
        "residuals": residuals(eqns, assignment),
        "cell_values": cell_values,
        "violated_cells": violated,
        "errors": errors,
        "summary": _summary(t_start, cells, eqns,
                            "satisfied" if satisfied else "unsatisfied"),
    }
    logger.info("Solved %d cell(s), %d equation(s): %s",
                len(cells), len(eqns), result["summary"]["validation_status"])
    return result


if __name__ == "__main__":
    test_templates = [
        "Mix {flour : 200} g flour with {water = 0.65 flour} g water.",
        "Legs {a = 3x}, {b = 4x}, hypotenuse {c}, with {x = 1} and {a^2 + b^2 = c^2}.",
        "Pick {0 < h <= 1} with {h = 2}.",
        "Broken {template",
    ]
    for template in test_templates:
        print(f"\n{'='*50}")
        print(f"Template: {template}")
        print('=' * 50)
        res = process_template(template)
        for cell in res["cells"]:
            print(f"  {{{cell['urtext']}}} → {format_num(res['cell_values'][cell['id']])}")
        for err in res["errors"]:
            print(f"  ! {err}")
        print(f"  Status: {res['summary']['validation_status']}")
