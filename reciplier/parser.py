"""
Reciplier — Template and cell parser.

A template is free text with inline cells in braces::

    Mix {flour : 200} g of flour with {water = 0.65 flour} g of water,
    at a hydration between {0.5 <= h <= 0.8}.

This module checks brace syntax, extracts the cells with their exact offsets
and splits each cell into its equality chain (``ceqn``), its single numeral
(``cval``) and the flags describing how that numeral was written.
"""

import logging
import math
import re

from reciplier.config import TOL_BOUND_EQUAL
from reciplier.matheval import (
    evaluate,
    is_bare_identifier,
    referenced_variables,
    to_number,
)

logger = logging.getLogger(__name__)

_CELL_RE = re.compile(r'\{([^{}]*)\}')
# Split on a single '=' that is not part of ==, !=, <= or >=
_EQ_SPLIT_RE = re.compile(r'(?<![=!<>])=(?!=)')
_INEQ_RE = re.compile(r'^(.+?)\s*(<=|<)\s*(.+?)\s*(<=|<)\s*(.+?)$', re.S)
_ANGLE_RE = re.compile(r'[<>]')


# ── Brace syntax ────────────────────────────────────────────────────────

def check_brace_syntax(text: str) -> list:
    """Return a list of brace errors in *text* (empty means the syntax is valid).

    Scans once, left to right, tracking whether we are inside a cell:
    ``{`` inside a cell is a nesting error, ``}`` outside one is a stray
    closing brace, and running off the end inside a cell is an unclosed
    brace.  After a nesting error the scan skips to the end of the outer
    span so one nested cell yields one error.
    """
    errors = []
    depth = 0
    brace_start = -1
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '{':
            if depth == 0:
                brace_start = i
            depth += 1
            if depth > 1:
                context = text[brace_start:brace_start + 30]
                errors.append(f'Nested braces at position {i}: "{context}..."')
                while i < n - 1 and depth > 0:
                    i += 1
                    if text[i] == '{':
                        depth += 1
                    elif text[i] == '}':
                        depth -= 1
        elif ch == '}':
            depth -= 1
            if depth < 0:
                errors.append(f"Stray closing brace at position {i}")
                depth = 0
        i += 1

    if depth > 0:
        errors.append(f"Unclosed brace starting at position {brace_start}")
    return errors


def extract_cells(text: str) -> list:
    """Return the top-level cells of *text* in source order.

    Assumes :func:`check_brace_syntax` found nothing.  Each cell is a dict
    with ``id``, ``urtext`` (inner text, verbatim), ``start_index`` (offset
    of the opening brace) and ``end_index`` (one past the closing brace).
    """
    return [
        make_cell(m.group(1), cell_id=f"cell_{n}",
                  start_index=m.start(), end_index=m.end())
        for n, m in enumerate(_CELL_RE.finditer(text))
    ]


def make_cell(urtext: str, cell_id: str = "cell_0", start_index: int = 0,
              end_index: int = None) -> dict:
    """Build a cell dict for *urtext* (used by extract_cells and by tests)."""
    if end_index is None:
        end_index = start_index + len(urtext) + 2
    return {
        "id": cell_id,
        "urtext": urtext,
        "start_index": start_index,
        "end_index": end_index,
    }


# ── Numerals ────────────────────────────────────────────────────────────

def numeral_value(text: str):
    """Return the number *text* denotes if it is a numeral, else None.

    Plain literals (``-3.14``, ``1e-5``) count, and so do constant
    expressions such as ``2*5`` or ``sqrt(2)``.
    """
    literal = to_number(text)
    if literal is not None:
        return literal
    if not text.strip() or referenced_variables(text):
        return None
    r = evaluate(text, {})
    if r.error is not None or r.value is None or not math.isfinite(r.value):
        return None
    return r.value


# ── Inequalities ────────────────────────────────────────────────────────

def parse_inequalities(content: str) -> dict:
    """Parse a bounded inequality such as ``0 <= x < 10``.

    Only ``bound (<|<=) name (<|<=) bound`` is accepted.  Returns
    ``{attempted, core, bounds, error}``:

    - plain expression: ``attempted`` False, ``core`` the trimmed text
    - valid inequality: ``core`` the variable name and ``bounds`` a dict of
      ``inf``, ``sup``, ``inf_strict``, ``sup_strict``
    - anything else relational: ``error`` is ``"ineq"``
    """
    trimmed = content.strip()
    if not _ANGLE_RE.search(trimmed):
        return {"attempted": False, "core": trimmed, "bounds": None, "error": None}

    failed = {"attempted": True, "core": None, "bounds": None, "error": "ineq"}
    match = _INEQ_RE.match(trimmed)
    if '>' in trimmed or not match:
        return failed

    inf_raw, inf_op, middle, sup_op, sup_raw = (g.strip() for g in match.groups())
    failed["core"] = middle
    if _ANGLE_RE.search(inf_raw + middle + sup_raw) or not is_bare_identifier(middle):
        return failed
    if middle in referenced_variables(inf_raw) + referenced_variables(sup_raw):
        return failed

    inf = numeral_value(inf_raw)
    sup = numeral_value(sup_raw)
    if inf is None or sup is None:
        return failed

    inf_strict = inf_op == '<'
    sup_strict = sup_op == '<'
    equal = abs(inf - sup) < TOL_BOUND_EQUAL
    if inf > sup and not equal:
        return failed
    if equal and (inf_strict or sup_strict):
        return failed

    return {
        "attempted": True,
        "core": middle,
        "bounds": {"inf": inf, "sup": sup,
                   "inf_strict": inf_strict, "sup_strict": sup_strict},
        "error": None,
    }


# ── Cells ───────────────────────────────────────────────────────────────

def parse_cell(cell) -> dict:
    """Split a cell into its equality chain, numeral and error flags.

    *cell* is a dict from :func:`extract_cells` (a bare string is accepted
    and wrapped with :func:`make_cell`).  The returned dict carries the
    cell's own keys plus:

    - ``ceqn``: non-numeral terms of the ``=`` chain, in order
    - ``cval``: the single numeral, from the chain or else from a ``:`` clause
    - ``pegged``: True when the numeral sits in the chain itself
    - ``colon_error``: None, ``"multi"``, ``"rhs"`` or ``"noconst"``
    - ``multiple_numbers``: more than one numeral in the chain
    - ``ineq`` / ``ineq_error``: bounds of an inequality cell, or the failure
    """
    if isinstance(cell, str):
        cell = make_cell(cell)
    content = cell["urtext"].strip()

    colon_count = content.count(':')
    has_colon = colon_count > 0
    if has_colon:
        left, right = (part.strip() for part in content.split(':', 1))
    else:
        left, right = content, ''

    colon_error = None
    if colon_count > 1:
        colon_error = 'multi'
    elif has_colon and re.search(r'[=<>]', right):
        colon_error = 'rhs'

    inequality = parse_inequalities(left)
    ineq_error = inequality["error"] is not None
    if ineq_error:
        parts = []
    else:
        parts = [p.strip() for p in _EQ_SPLIT_RE.split(inequality["core"]) if p.strip()]

    chain_numbers = []
    ceqn = []
    for part in parts:
        value = numeral_value(part)
        if value is None:
            ceqn.append(part)
        else:
            chain_numbers.append(value)

    colon_number = None
    if has_colon and colon_error is None and right:
        colon_number = numeral_value(right)
    if has_colon and colon_error is None and not chain_numbers and colon_number is None:
        colon_error = 'noconst'

    multiple_numbers = len(chain_numbers) > 1
    pegged = len(chain_numbers) == 1
    if pegged:
        cval = chain_numbers[0]
    elif not chain_numbers and colon_number is not None:
        cval = colon_number
    else:
        cval = None

    ineq = None
    if inequality["bounds"] is not None:
        ineq = dict(inequality["bounds"], var_name=inequality["core"])

    if ineq_error:
        logger.debug("Cell {%s}: malformed inequality", cell["urtext"])

    return {
        **cell,
        "ceqn": ceqn,
        "cval": cval,
        "pegged": pegged,
        "colon_error": colon_error,
        "multiple_numbers": multiple_numbers,
        "ineq": ineq,
        "ineq_error": ineq_error,
        "has_constraint": len(parts) >= 2,
        "has_number": cval is not None,
    }


def parse_template(text: str) -> list:
    """Extract and parse every cell of *text* (brace syntax must be valid)."""
    return [parse_cell(cell) for cell in extract_cells(text)]
