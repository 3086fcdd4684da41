#########################################################################################
##
##                      FINITE-DIFFERENCE GRADIENT AND HESSIAN ESTIMATION
##                                 (opt/gradient.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import functools
import logging
from typing import Callable

import numpy as np

from ..errors import GradientEvaluationError
from .parallel import SERIAL, Workers


logger = logging.getLogger(__name__)

__all__ = ["GradientEstimator", "GRADIENT_METHODS", "default_step"]


# CONSTANTS =============================================================================

_EPS = np.finfo(float).eps

GRADIENT_METHODS = ("forward", "central", "richardson")

#relative step fractions, h_i = step * max(|x_i|, 1)
_DEFAULT_STEPS = {
    "forward": np.sqrt(_EPS),
    "central": _EPS ** (1.0 / 3.0),
    "richardson": 1e-4,
    "hessian": _EPS ** 0.25,
}


def default_step(method: str) -> float:
    """Default relative step fraction for *method*."""
    try:
        return float(_DEFAULT_STEPS[method])
    except KeyError:
        raise ValueError(
            f"Unknown gradient method '{method}', expected one of {GRADIENT_METHODS}"
        ) from None


def _call(objective: Callable, point: np.ndarray) -> float:
    return float(objective(point))


# ESTIMATOR =============================================================================

class GradientEstimator:
    """Finite-difference derivatives of a (possibly replicated) objective with
    respect to the active parameters.

    Parameters
    ----------
    method : str
        ``"forward"``, ``"central"`` (default) or ``"richardson"``.
    step : float, optional
        Relative step fraction; the per-component step is
        ``h_i = step * max(|x_i|, 1)``. Defaults depend on *method*.
    workers : Workers, optional
        Caller-owned pool view; when parallel, all perturbed points of one
        gradient (and all of their replicate trials) are evaluated as one
        batch.

    Notes
    -----
    Formulas, per active component ``i``:

    * forward: ``(f(x + h e_i) - f(x)) / h``
    * central: ``(f(x + h e_i) - f(x - h e_i)) / 2h``
    * richardson: ``(4 D(h/2) - D(h)) / 3`` with ``D`` the central difference

    Any failed or non-finite evaluation fails the whole computation with
    :class:`GradientEvaluationError`; no partial gradient is returned.

    Example
    -------
    .. code-block:: python

        est = GradientEstimator("central")
        est.gradient(lambda x: np.sum(x**2), np.array([1.0, -2.0]))
        # array([ 2., -4.])
    """

    def __init__(self, method: str = "central", step: float | None = None, workers: Workers | None = None):
        default_step(method)
        self.method = method
        self.step = step
        self.workers = workers if workers is not None else SERIAL


    # EVALUATION ------------------------------------------------------------------------

    def evaluate_points(self, objective: Callable, points: list[np.ndarray]) -> np.ndarray:
        """Evaluate *objective* at every point, in order.

        Replicated objectives are split into their individual trials so a
        parallel pool sees ``len(points) * replicates`` independent units.
        """
        try:
            if self.workers.is_parallel and hasattr(objective, "trials"):
                groups = [objective.trials(p) for p in points]
                flat = [task for group in groups for task in group]
                raw = self.workers.run(flat)
                values, k = [], 0
                for group in groups:
                    values.append(objective.reduce(raw[k:k + len(group)]))
                    k += len(group)
            elif self.workers.is_parallel:
                tasks = [functools.partial(_call, objective, p) for p in points]
                values = self.workers.run(tasks)
            else:
                values = [_call(objective, p) for p in points]
        except GradientEvaluationError:
            raise
        except Exception as exc:
            raise GradientEvaluationError(
                f"Objective evaluation failed during finite differences: "
                f"{type(exc).__name__}: {exc}"
            ) from exc

        out = np.asarray(values, dtype=float)
        bad = np.flatnonzero(~np.isfinite(out))
        if bad.size:
            raise GradientEvaluationError(
                f"Objective returned a non-finite value at {bad.size} of "
                f"{out.size} finite-difference points"
            )
        return out


    def _steps(self, x: np.ndarray, step: float) -> np.ndarray:
        return step * np.maximum(np.abs(x), 1.0)


    # GRADIENT --------------------------------------------------------------------------

    def gradient(
        self,
        objective: Callable,
        x,
        method: str | None = None,
        step: float | None = None,
    ) -> np.ndarray:
        """Finite-difference gradient of *objective* at *x*.

        Parameters
        ----------
        objective : callable
            Function of the reduced (active-only) vector.
        x : array_like
            Reduced parameter vector.
        method : str, optional
            Overrides the estimator's method.
        step : float, optional
            Overrides the estimator's relative step fraction.

        Returns
        -------
        np.ndarray
            Gradient of length ``len(x)`` in active-parameter order.
        """
        method = method or self.method
        if step is None:
            step = self.step if self.step is not None else default_step(method)
        else:
            default_step(method)

        x = np.asarray(x, dtype=float).reshape(-1)
        k = x.size
        if k == 0:
            return np.zeros(0)

        h = self._steps(x, step)
        eye = np.eye(k)

        if method == "forward":
            points = [x] + [x + h[i] * eye[i] for i in range(k)]
            f = self.evaluate_points(objective, points)
            return (f[1:] - f[0]) / h

        if method == "central":
            points = [x + h[i] * eye[i] for i in range(k)] + [x - h[i] * eye[i] for i in range(k)]
            f = self.evaluate_points(objective, points)
            return (f[:k] - f[k:]) / (2.0 * h)

        #richardson: central differences at h and h/2, one batch
        h2 = 0.5 * h
        points = (
            [x + h[i] * eye[i] for i in range(k)]
            + [x - h[i] * eye[i] for i in range(k)]
            + [x + h2[i] * eye[i] for i in range(k)]
            + [x - h2[i] * eye[i] for i in range(k)]
        )
        f = self.evaluate_points(objective, points)
        d1 = (f[:k] - f[k:2 * k]) / (2.0 * h)
        d2 = (f[2 * k:3 * k] - f[3 * k:]) / (2.0 * h2)
        return (4.0 * d2 - d1) / 3.0


    def __call__(self, objective: Callable, x) -> np.ndarray:
        return self.gradient(objective, x)


    # HESSIAN ---------------------------------------------------------------------------

    def hessian(self, objective: Callable, x, step: float | None = None) -> np.ndarray:
        """Second-order central-difference Hessian of *objective* at *x*.

        Uses ``1 + 2k + 2k(k-1)`` evaluations for ``k`` parameters, all
        submitted as one batch.
        """
        x = np.asarray(x, dtype=float).reshape(-1)
        k = x.size
        if k == 0:
            return np.zeros((0, 0))

        h = self._steps(x, _DEFAULT_STEPS["hessian"] if step is None else step)
        eye = np.eye(k)

        points = [x]
        points += [x + h[i] * eye[i] for i in range(k)]
        points += [x - h[i] * eye[i] for i in range(k)]
        pairs = [(i, j) for i in range(k) for j in range(i + 1, k)]
        for i, j in pairs:
            ei, ej = h[i] * eye[i], h[j] * eye[j]
            points += [x + ei + ej, x + ei - ej, x - ei + ej, x - ei - ej]

        f = self.evaluate_points(objective, points)
        f0, fp, fm = f[0], f[1:k + 1], f[k + 1:2 * k + 1]

        H = np.diag((fp - 2.0 * f0 + fm) / h ** 2)
        for n, (i, j) in enumerate(pairs):
            fpp, fpm, fmp, fmm = f[2 * k + 1 + 4 * n: 2 * k + 5 + 4 * n]
            H[i, j] = H[j, i] = (fpp - fpm - fmp + fmm) / (4.0 * h[i] * h[j])
        return H


    def __repr__(self) -> str:
        return f"GradientEstimator(method={self.method!r}, step={self.step}, workers={self.workers!r})"
