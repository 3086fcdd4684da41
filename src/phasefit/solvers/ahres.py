#########################################################################################
##
##              ADAPTIVE HIERARCHICAL RECOMBINATION EVOLUTION STRATEGY
##                                (solvers/ahres.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
from scipy.optimize import OptimizeResult

from ._solver import normalize_scipy, register


# SOLVER ================================================================================

def ahres(fn, x0, lower=None, upper=None, *, maxit=None, popsize=None, sigma=None,
          xtol=1e-8, rng=None):
    """Minimize *fn* with a self-adaptive (mu/mu_w, lambda) evolution strategy.

    Each offspring carries its own per-coordinate step sizes, mutated
    log-normally around the parents' step sizes. The ``mu`` best offspring
    are recombined with log-rank weights into the next distribution mean,
    and their step sizes are recombined geometrically with the same weights.

    Derivative-free and tolerant to noisy objectives: the returned point is
    the final distribution mean rather than the best (luckiest) sample.

    Parameters
    ----------
    fn : callable
        Objective of a 1-D float array.
    x0 : array_like
        Initial distribution mean.
    lower, upper : array_like, optional
        Box bounds, offspring are clipped to the box.
    maxit : int, optional
        Maximum number of generations, default ``100 * n + 200``.
    popsize : int, optional
        Offspring per generation, default ``4 + floor(3 ln n)``.
    sigma : float or array_like, optional
        Initial step sizes. Defaults to a quarter of the box width where
        both bounds are finite, ``0.1 * max(|x0|, 1)`` elsewhere.
    xtol : float
        Stops once every step size is below ``xtol * max(|mean|, 1)``.
    rng : numpy.random.Generator or int, optional
        Random source; the global numpy state is never used.

    Returns
    -------
    scipy.optimize.OptimizeResult
    """
    rng = np.random.default_rng(rng)
    m = np.asarray(x0, dtype=float).reshape(-1).copy()
    n = m.size

    lo = np.full(n, -np.inf) if lower is None else np.asarray(lower, dtype=float)
    hi = np.full(n, np.inf) if upper is None else np.asarray(upper, dtype=float)
    m = np.clip(m, lo, hi)

    lam = int(popsize) if popsize is not None else 4 + int(np.floor(3 * np.log(max(n, 1))))
    lam = max(lam, 4)
    mu = lam // 2
    w = np.log(mu + 0.5) - np.log(np.arange(1, mu + 1))
    w /= w.sum()

    if sigma is None:
        width = hi - lo
        s = np.where(np.isfinite(width), 0.25 * width, 0.1 * np.maximum(np.abs(m), 1.0))
    else:
        s = np.broadcast_to(np.asarray(sigma, dtype=float), (n,)).copy()

    #global and coordinate-wise learning rates
    tau = 1.0 / np.sqrt(2.0 * n)
    tau_i = 1.0 / np.sqrt(2.0 * np.sqrt(n))

    maxit = int(maxit) if maxit is not None else 100 * n + 200
    nfev = 0
    message = "Maximum number of generations reached"
    success = False

    gen = 0
    for gen in range(1, maxit + 1):
        z = rng.standard_normal((lam, n))
        s_off = s * np.exp(tau * rng.standard_normal((lam, 1)) + tau_i * rng.standard_normal((lam, n)))
        x_off = np.clip(m + s_off * z, lo, hi)

        f_off = np.array([fn(x) for x in x_off], dtype=float)
        nfev += lam

        #non-finite offspring rank last
        f_rank = np.where(np.isfinite(f_off), f_off, np.inf)
        sel = np.argsort(f_rank, kind="stable")[:mu]

        m = np.clip(w @ x_off[sel], lo, hi)
        s = np.exp(w @ np.log(s_off[sel]))

        if np.all(s < xtol * np.maximum(np.abs(m), 1.0)):
            message = "Step sizes below tolerance"
            success = True
            break

    value = float(fn(m))
    nfev += 1

    return OptimizeResult(
        x=m,
        fun=value,
        success=success,
        status=0 if success else 1,
        message=message,
        nit=gen,
        nfev=nfev,
        sigma=s,
    )


# INVOKE ================================================================================

def _invoke_ahres(par, fn, gr, lower, upper, options, rng=None):
    opts = dict(options)
    return ahres(
        fn,
        par,
        lower,
        upper,
        maxit=opts.pop("maxit", None),
        rng=rng,
        **opts,
    )


register(
    "AHR-ES",
    _invoke_ahres,
    normalize_scipy,
    supports_bounds=True,
    stochastic=True,
    replace=True,
)
