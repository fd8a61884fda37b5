"""
Reciplier — Equation builder, seeds and bounds.

Turns parsed cells into the equation list the solver consumes and picks the
starting value of every variable.  An equation is a list of terms that must
all be equal; a term is either a float (a numeral) or an expression string.
"""

import logging
import math

from reciplier.config import TOL_BOUND_EQUAL
from reciplier.matheval import is_bare_identifier, referenced_variables

logger = logging.getLogger(__name__)


# ── Equations ───────────────────────────────────────────────────────────

def _has_grammar_error(cell: dict) -> bool:
    return bool(cell.get("colon_error") or cell.get("multiple_numbers")
                or cell.get("ineq_error"))


def _is_seed(cell: dict) -> bool:
    """True for ``{name : 5}``: a starting value, not a standing equation.

    This holds even when other cells constrain ``name`` (``{flour : 200}``
    beside ``{water = 0.65 flour}``).  The seed still wins the first solve
    through :func:`initial_values`, but a freeze on ``water`` can move
    ``flour`` instead of contradicting a pinned 200.
    """
    ceqn = cell.get("ceqn") or []
    return (not cell.get("pegged") and cell.get("cval") is not None
            and len(ceqn) == 1 and is_bare_identifier(ceqn[0]))


def _cell_equation(cell: dict, initial: bool):
    if _has_grammar_error(cell):
        return None
    terms = list(cell.get("ceqn") or [])
    cval = cell.get("cval")
    if cval is not None:
        if cell.get("pegged"):
            terms.append(float(cval))
        elif initial and not _is_seed(cell):
            # A colon value shapes the first solve only.
            terms.append(float(cval))
    return terms if len(terms) >= 2 else None


def _system(cells: list, frozen: dict = None, initial: bool = False):
    for cell in cells:
        eqn = _cell_equation(cell, initial)
        if eqn is not None:
            yield eqn, "{" + cell["urtext"].strip() + "}"
    for name, value in (frozen or {}).items():
        if not is_bare_identifier(name):
            raise ValueError(f"Frozen name is not a variable: {name!r}")
        yield [name.strip(), float(value)], f"{{{name.strip()}}} (frozen)"


def build_equations(cells: list, frozen: dict = None, initial: bool = False) -> list:
    """Build the solver's equation list from parsed *cells*.

    Each cell with a real constraint contributes ``ceqn`` plus its pegged
    numeral.  With ``initial=True`` (first solve, no warm start) colon values
    are appended too, except for plain ``{name : number}`` seeds, which only
    set a starting value (see :func:`initial_values`).  Cells with grammar
    errors contribute nothing.  Every frozen ``name → value`` adds
    ``[name, value]`` after the cell equations.

    Raises ValueError if a frozen name is not an identifier.
    """
    return [eqn for eqn, _ in _system(cells, frozen, initial)]


def equation_labels(cells: list, frozen: dict = None, initial: bool = False) -> list:
    """Human-readable source of each equation, parallel to :func:`build_equations`."""
    return [label for _, label in _system(cells, frozen, initial)]


# ── Bounds ──────────────────────────────────────────────────────────────

def combine_bounds(cells: list) -> dict:
    """Merge the inequality cells into the tightest bounds per variable.

    Returns ``{name: {inf, sup, inf_strict, sup_strict}}`` where a missing
    side is None.  When two cells give the same bound the strict flags are
    OR-ed together.
    """
    combined = {}
    for cell in cells:
        ineq = cell.get("ineq")
        if not ineq:
            continue
        entry = combined.setdefault(ineq["var_name"], {
            "inf": None, "sup": None, "inf_strict": False, "sup_strict": False,
        })

        inf = ineq.get("inf")
        if inf is not None and math.isfinite(inf):
            if entry["inf"] is None or inf > entry["inf"]:
                entry["inf"] = inf
                entry["inf_strict"] = ineq["inf_strict"]
            elif abs(inf - entry["inf"]) < TOL_BOUND_EQUAL:
                entry["inf_strict"] = entry["inf_strict"] or ineq["inf_strict"]

        sup = ineq.get("sup")
        if sup is not None and math.isfinite(sup):
            if entry["sup"] is None or sup < entry["sup"]:
                entry["sup"] = sup
                entry["sup_strict"] = ineq["sup_strict"]
            elif abs(sup - entry["sup"]) < TOL_BOUND_EQUAL:
                entry["sup_strict"] = entry["sup_strict"] or ineq["sup_strict"]
    return combined


def strict_epsilon(inf=None, sup=None) -> float:
    """Amount a strict bound is moved inward, scaled to the bound magnitudes.

    Never more than a thousandth of the interval width.
    """
    has_inf = inf is not None and math.isfinite(inf)
    has_sup = sup is not None and math.isfinite(sup)
    scale = max(abs(inf) if has_inf else 0.0, abs(sup) if has_sup else 0.0, 1.0)
    eps = scale * 1e-9 + 1e-9
    if has_inf and has_sup:
        span = abs(sup - inf)
        if span > 0:
            eps = min(eps, span / 1000)
    return eps


def effective_bounds(cells: list) -> tuple:
    """Return ``(inf, sup)`` dicts of closed bounds, strict ones nudged inward."""
    inf, sup = {}, {}
    for name, entry in combine_bounds(cells).items():
        eps = strict_epsilon(entry["inf"], entry["sup"])
        if entry["inf"] is not None:
            inf[name] = entry["inf"] + (eps if entry["inf_strict"] else 0.0)
        if entry["sup"] is not None:
            sup[name] = entry["sup"] - (eps if entry["sup_strict"] else 0.0)
    return inf, sup


# ── Seeds ───────────────────────────────────────────────────────────────

def _finite(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def _colon_defaults(cells: list) -> dict:
    defaults = {}
    for cell in cells:
        cval = cell.get("cval")
        if cell.get("pegged") or cval is None or _has_grammar_error(cell):
            continue
        for term in cell.get("ceqn") or []:
            if is_bare_identifier(term):
                defaults.setdefault(term.strip(), float(cval))
    return defaults


def initial_values(cells: list, bounds: tuple = None, previous: dict = None) -> dict:
    """Pick a starting value for every variable the cells reference.

    In order of preference: the finite value from *previous* (a warm start),
    the colon default of a cell whose chain contains the bare name, the
    midpoint of its bounds (``inf + 1`` or ``sup - 1`` when one-sided), 1.
    Whatever the source, the seed is then clamped into the bounds.
    *bounds* is the ``(inf, sup)`` pair from :func:`effective_bounds`.
    """
    inf, sup = bounds if bounds is not None else ({}, {})
    previous = previous or {}
    defaults = _colon_defaults(cells)

    seeds = {}
    for cell in cells:
        for term in cell.get("ceqn") or []:
            for name in referenced_variables(term):
                if name in seeds:
                    continue
                lo, hi = inf.get(name), sup.get(name)
                if _finite(previous.get(name)):
                    seeds[name] = float(previous[name])
                elif name in defaults:
                    seeds[name] = defaults[name]
                elif lo is not None and hi is not None:
                    seeds[name] = (lo + hi) / 2
                elif lo is not None:
                    seeds[name] = lo + 1
                elif hi is not None:
                    seeds[name] = hi - 1
                else:
                    seeds[name] = 1.0
                if lo is not None:
                    seeds[name] = max(seeds[name], lo)
                if hi is not None:
                    seeds[name] = min(seeds[name], hi)
    logger.debug("Seeded %d variable(s)", len(seeds))
    return seeds
