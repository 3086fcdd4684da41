#########################################################################################
##
##                      LOCAL BACKENDS (scipy.optimize.minimize)
##                             (solvers/scipy_local.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import functools

import scipy.optimize as sci_opt

from ._solver import normalize_scipy, register


# CAPABILITIES ==========================================================================
#
# name -> (supports_bounds, supports_gradient, option carrying the iteration cap)

MINIMIZE_METHODS = {
    "Nelder-Mead":  (True,  False, "maxiter"),
    "Powell":       (True,  False, "maxiter"),
    "CG":           (False, True,  "maxiter"),
    "BFGS":         (False, True,  "maxiter"),
    "L-BFGS-B":     (True,  True,  "maxiter"),
    "TNC":          (True,  True,  "maxfun"),
    "SLSQP":        (True,  True,  "maxiter"),
    "COBYLA":       (True,  False, "maxiter"),
    "trust-constr": (True,  True,  "maxiter"),
}

#keyword arguments of scipy.optimize.minimize itself rather than solver options
_MINIMIZE_KWARGS = ("tol", "constraints", "hess", "hessp", "callback")


# INVOKE ================================================================================

def _invoke_minimize(par, fn, gr, lower, upper, options, *, method, maxit_key):
    """Call ``scipy.optimize.minimize`` with the canonical arguments.

    ``maxit`` is renamed to the option the method understands, the keys in
    ``_MINIMIZE_KWARGS`` become keyword arguments, everything else lands in
    ``options`` verbatim.
    """
    opts = dict(options)
    kwargs = {k: opts.pop(k) for k in _MINIMIZE_KWARGS if k in opts}

    maxit = opts.pop("maxit", None)
    if maxit is not None:
        opts.setdefault(maxit_key, int(maxit))

    bounds = None
    if lower is not None:
        bounds = sci_opt.Bounds(lower, upper)

    return sci_opt.minimize(
        fn,
        x0=par,
        jac=gr,
        bounds=bounds,
        method=method,
        options=opts,
        **kwargs,
    )


# REGISTRATION ==========================================================================

for _name, (_bounds, _grad, _maxit_key) in MINIMIZE_METHODS.items():
    register(
        _name,
        functools.partial(_invoke_minimize, method=_name, maxit_key=_maxit_key),
        normalize_scipy,
        supports_bounds=_bounds,
        supports_gradient=_grad,
        replace=True,
    )
