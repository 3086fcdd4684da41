#########################################################################################
##
##                          BENCHMARK OBJECTIVE FUNCTIONS
##                               (utils/functions.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np


__all__ = ["sphere", "sphere_noisy", "rosenbrock"]


# FUNCTIONS =============================================================================

def _vector(x) -> np.ndarray:
    """Flat float vector from a sequence, array or mapping of values."""
    if isinstance(x, dict):
        return np.concatenate([_vector(v) for v in x.values()]) if x else np.zeros(0)
    return np.asarray(x, dtype=float).reshape(-1)


def sphere(x) -> float:
    """Sum of squares, minimum 0 at the origin."""
    v = _vector(x)
    return float(np.dot(v, v))


def sphere_noisy(x, sd=0.1, aggregate=True, rng=None):
    """Sphere function evaluated after a random displacement of the point.

    Each coordinate is shifted by an independent ``N(0, sd**2)`` draw before
    squaring, so the expected value is ``sum(x**2) + n * sd**2``.

    Parameters
    ----------
    x : array_like or dict
        Coordinates of the point.
    sd : float
        Standard deviation of the displacement.
    aggregate : bool
        Return the sum when True, otherwise the per-coordinate terms.
    rng : numpy.random.Generator or int, optional
        Random source; a fresh generator is used when omitted.
    """
    v = _vector(x)
    rng = np.random.default_rng(rng)
    out = (v + rng.normal(0.0, sd, size=v.size)) ** 2
    return float(out.sum()) if aggregate else out


def rosenbrock(x) -> float:
    """Rosenbrock valley, minimum 0 at ``(1, ..., 1)``."""
    v = _vector(x)
    return float(np.sum(100.0 * (v[1:] - v[:-1] ** 2) ** 2 + (1.0 - v[:-1]) ** 2))
