#########################################################################################
##
##                  GLOBAL BACKENDS (differential evolution, annealing)
##                             (solvers/scipy_global.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import scipy.optimize as sci_opt

from ..opt.objective import accepts_keyword
from ._solver import normalize_scipy, register


# HELPERS ===============================================================================

def _rng_kwarg(func, rng) -> dict:
    """Pass the generator under the keyword the installed SciPy understands."""
    if rng is None:
        return {}
    return {"rng": rng} if accepts_keyword(func, "rng") else {"seed": rng}


def _box(lower, upper):
    return list(zip(lower, upper))


# INVOKE ================================================================================

def _invoke_differential_evolution(par, fn, gr, lower, upper, options, rng=None):
    opts = dict(options)
    maxit = opts.pop("maxit", None)
    if maxit is not None:
        opts.setdefault("maxiter", int(maxit))
    return sci_opt.differential_evolution(
        fn,
        bounds=_box(lower, upper),
        x0=par,
        **_rng_kwarg(sci_opt.differential_evolution, rng),
        **opts,
    )


def _invoke_dual_annealing(par, fn, gr, lower, upper, options, rng=None):
    opts = dict(options)
    maxit = opts.pop("maxit", None)
    if maxit is not None:
        opts.setdefault("maxiter", int(maxit))
    return sci_opt.dual_annealing(
        fn,
        bounds=_box(lower, upper),
        x0=par,
        **_rng_kwarg(sci_opt.dual_annealing, rng),
        **opts,
    )


# REGISTRATION ==========================================================================

register(
    "differential-evolution",
    _invoke_differential_evolution,
    normalize_scipy,
    supports_bounds=True,
    requires_bounds=True,
    stochastic=True,
    replace=True,
)

register(
    "dual-annealing",
    _invoke_dual_annealing,
    normalize_scipy,
    supports_bounds=True,
    requires_bounds=True,
    stochastic=True,
    replace=True,
)
