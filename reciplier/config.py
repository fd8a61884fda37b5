"""
Reciplier — Tolerances and solver settings.

Every numeric knob the solver and the satisfiability checks use lives here so
callers can tune a single solve without touching module globals.
"""

# ── Comparison tolerances ───────────────────────────────────────────────
TOL_TIGHT = 1e-9           # agreement between two values during propagation
TOL_SATISFIED = 1e-6       # equations_satisfied / is_cell_violated
TOL_DISPLAY = 1e-4         # contradiction messages (must cover 4-decimal display)
TOL_BOUND_EQUAL = 1e-12    # inequality bounds treated as equal

# ── Default solver settings ─────────────────────────────────────────────
SOLVER_SETTINGS = {
    "max_iterations": 30000,     # gradient refinement cap
    "learn_rate": 0.02,
    "decay": 0.95,               # RMSProp running mean-square decay
    "epsilon": 1e-10,            # stop once total squared residual is below this
    "step_clip": 10.0,
    "delta": 1e-6,               # finite-difference step for the gradient
    "newton_iterations": 10,
    "newton_delta": 1e-5,
    "newton_accept": 1e-3,
    "neutral_seed": 0.5,         # must be nonzero
    "dependency_passes": 3,
    "pass_factor": 4,            # propagation passes per variable
}


def solver_settings(overrides: dict | None = None) -> dict:
    """Return the default solver settings with *overrides* merged on top.

    Raises ValueError for keys the solver does not know about.
    """
    settings = dict(SOLVER_SETTINGS)
    if not overrides:
        return settings
    unknown = sorted(set(overrides) - set(SOLVER_SETTINGS))
    if unknown:
        raise ValueError(f"Unknown solver setting(s): {', '.join(unknown)}")
    settings.update(overrides)
    return settings
