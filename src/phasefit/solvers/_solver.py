#########################################################################################
##
##                         SOLVER REGISTRY AND ADAPTER CONTRACT
##                               (solvers/_solver.py)
##
##        Every backend minimizer is registered under a name together with its
##        capabilities, a function that calls it with its native signature, and
##        a translator of its native result into an OptimizationResult.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import numpy as np

from ..errors import (
    GradientEvaluationError,
    SolverExecutionError,
    UnknownMethodError,
    UnsupportedConstraintError,
)
from ..opt.result import Convergence, OptimizationResult


logger = logging.getLogger(__name__)

__all__ = [
    "Solver",
    "SolverAdapter",
    "register",
    "unregister",
    "get_solver",
    "available_methods",
    "method_chain",
    "normalize_scipy",
]


# SOLVER DESCRIPTOR =====================================================================

@dataclass(frozen=True)
class Solver:
    """Registered backend minimizer.

    Parameters
    ----------
    name : str
        Registry key.
    invoke : callable
        ``invoke(par, fn, gr, lower, upper, options, rng=None) -> native``.
        ``gr`` is ``None`` unless ``supports_gradient``; ``lower`` / ``upper``
        are ``None`` unless ``supports_bounds`` and the problem is bounded.
        ``rng`` is only passed to stochastic backends.
    normalize : callable
        ``normalize(native) -> OptimizationResult`` over the reduced vector.
    supports_bounds : bool
        Backend honours box constraints.
    supports_gradient : bool
        Backend uses a gradient function.
    requires_bounds : bool
        Backend only works on a finite box (global searches).
    stochastic : bool
        Backend draws random numbers and accepts ``rng``.
    """

    name: str
    invoke: Callable[..., Any]
    normalize: Callable[[Any], OptimizationResult]
    supports_bounds: bool = False
    supports_gradient: bool = False
    requires_bounds: bool = False
    stochastic: bool = False


_REGISTRY: dict[str, Solver] = {}


def register(
    name: str,
    invoke: Callable[..., Any],
    normalize: Callable[[Any], OptimizationResult],
    *,
    supports_bounds: bool = False,
    supports_gradient: bool = False,
    requires_bounds: bool = False,
    stochastic: bool = False,
    replace: bool = False,
) -> Solver:
    """Register a backend Solver under *name*.

    Raises
    ------
    ValueError
        If *name* is already registered and ``replace`` is False.
    """
    if name in _REGISTRY and not replace:
        raise ValueError(f"Solver '{name}' is already registered")
    if requires_bounds and not supports_bounds:
        raise ValueError(f"Solver '{name}': requires_bounds implies supports_bounds")

    solver = Solver(
        name=name,
        invoke=invoke,
        normalize=normalize,
        supports_bounds=supports_bounds,
        supports_gradient=supports_gradient,
        requires_bounds=requires_bounds,
        stochastic=stochastic,
    )
    _REGISTRY[name] = solver
    return solver


def unregister(name: str) -> None:
    _REGISTRY.pop(name, None)


def get_solver(name: str) -> Solver:
    """Look up a registered Solver, failing fast on unknown names."""
    try:
        return _REGISTRY[name]
    except (KeyError, TypeError):
        raise UnknownMethodError(name, available_methods()) from None


def available_methods() -> list[str]:
    return sorted(_REGISTRY)


def method_chain(method: str | Sequence[str]) -> list[str]:
    """A single name or an ordered sequence of names as a list of names."""
    if isinstance(method, str):
        return [method]
    names = list(method)
    if not names:
        raise ValueError("Solver chain must contain at least one method")
    return names


# NATIVE RESULT NORMALIZATION ===========================================================

_LIMIT_PATTERN = re.compile(r"max|limit|exceed", re.IGNORECASE)


def _message_text(message: Any) -> str:
    if isinstance(message, (list, tuple)):
        return "; ".join(str(m) for m in message)
    return str(message)


def normalize_scipy(native) -> OptimizationResult:
    """Translate a ``scipy.optimize.OptimizeResult``.

    An iteration / evaluation limit message maps to ``max-iterations`` even
    when the backend flags success (``dual_annealing`` does); otherwise the
    backend ``success`` flag decides between ``converged`` and ``failed``.
    """
    message = _message_text(getattr(native, "message", ""))
    if _LIMIT_PATTERN.search(message):
        status = Convergence.MAX_ITERATIONS
    elif bool(getattr(native, "success", False)):
        status = Convergence.CONVERGED
    else:
        status = Convergence.FAILED

    nit = getattr(native, "nit", None)
    return OptimizationResult(
        par=np.atleast_1d(np.asarray(native.x, dtype=float)).copy(),
        value=float(native.fun),
        convergence=status,
        message=message,
        iterations=int(nit) if nit is not None else None,
    )


# ADAPTER ===============================================================================

class _Counted:
    """Callable wrapper counting calls, optionally clipping to a box."""

    def __init__(self, fn: Callable, lower=None, upper=None):
        self.fn = fn
        self.lower = lower
        self.upper = upper
        self.calls = 0


    def __call__(self, x, *args):
        self.calls += 1
        x = np.asarray(x, dtype=float)
        if self.lower is not None:
            x = np.clip(x, self.lower, self.upper)
        return self.fn(x)


class SolverAdapter:
    """Uniform call contract over every registered backend.

    Parameters
    ----------
    bounds_policy : str
        What to do with a bounded problem on a backend without bound
        support: ``"reject"`` (default) raises
        :class:`UnsupportedConstraintError` before any evaluation,
        ``"clip"`` runs the backend unbounded on an objective evaluated at
        the point clipped to the box, and clips the returned solution.

    Notes
    -----
    A Solver that raises during its own search does not propagate: the run
    is reported with ``convergence = failed`` and the error attached, and
    the returned ``par`` is the starting point of that run.
    """

    def __init__(self, bounds_policy: str = "reject"):
        if bounds_policy not in ("reject", "clip"):
            raise ValueError(f"Unknown bounds policy '{bounds_policy}'")
        self.bounds_policy = bounds_policy


    # VALIDATION ------------------------------------------------------------------------

    def validate(self, method: str | Sequence[str], lower=None, upper=None) -> list[Solver]:
        """Resolve *method* to Solvers and check them against the bounds.

        Raises
        ------
        UnknownMethodError
            For any unregistered name.
        UnsupportedConstraintError
            For a bounded problem on a bounds-incapable backend under the
            ``reject`` policy, or an unbounded problem on a backend that
            requires a finite box.
        """
        solvers = [get_solver(name) for name in method_chain(method)]

        lo = np.asarray(lower if lower is not None else [], dtype=float)
        hi = np.asarray(upper if upper is not None else [], dtype=float)
        bounded = bool(np.any(np.isfinite(lo)) or np.any(np.isfinite(hi)))
        #missing bounds mean an unbounded problem, never a finite box
        finite_box = bool(
            lo.size > 0
            and hi.size > 0
            and np.all(np.isfinite(lo))
            and np.all(np.isfinite(hi))
        )

        for s in solvers:
            if s.requires_bounds and not finite_box:
                raise UnsupportedConstraintError(
                    f"Solver '{s.name}' requires finite lower and upper bounds "
                    f"for every active parameter"
                )
            if bounded and not s.supports_bounds and self.bounds_policy == "reject":
                raise UnsupportedConstraintError(
                    f"Solver '{s.name}' does not support bounds. Use a bounded "
                    f"method or control['bounds.policy'] = 'clip'."
                )
        return solvers


    # EXECUTION -------------------------------------------------------------------------

    def run(
        self,
        method: str | Sequence[str],
        par,
        objective: Callable,
        gradient: Callable | None = None,
        lower=None,
        upper=None,
        options: dict | None = None,
        rng: np.random.Generator | None = None,
    ) -> OptimizationResult:
        """Run one Solver, or a chain of Solvers, on the reduced problem.

        With a sequence of names each Solver starts from the previous one's
        solution. The chain stops at the first failed run.

        Returns
        -------
        OptimizationResult
            Over the reduced vector; ``counts`` and ``elapsed`` are summed
            over the chain and ``method`` joins the names that ran.
        """
        solvers = self.validate(method, lower, upper)
        x = np.asarray(par, dtype=float).reshape(-1).copy()
        options = dict(options or {})

        results: list[OptimizationResult] = []
        for solver in solvers:
            res = self._run_one(solver, x, objective, gradient, lower, upper, options, rng)
            results.append(res)
            if not res.success:
                break
            x = res.par
            logger.debug("solver %s finished: value=%.6g (%s)", solver.name, res.value, res.convergence)

        if len(results) == 1:
            return results[0]

        last = results[-1]
        return last.replace(
            counts={
                "function": sum(r.counts["function"] for r in results),
                "gradient": sum(r.counts["gradient"] for r in results),
            },
            elapsed=sum(r.elapsed for r in results),
            method=",".join(r.method for r in results),
        )


    def _run_one(self, solver, x0, objective, gradient, lower, upper, options, rng) -> OptimizationResult:
        lo = None if lower is None else np.asarray(lower, dtype=float)
        hi = None if upper is None else np.asarray(upper, dtype=float)
        bounded = lo is not None and bool(np.any(np.isfinite(lo)) or np.any(np.isfinite(hi)))

        clip = bounded and not solver.supports_bounds
        fn = _Counted(objective, lo, hi) if clip else _Counted(objective)
        gr = None
        if solver.supports_gradient and gradient is not None:
            gr = _Counted(gradient, lo, hi) if clip else _Counted(gradient)

        kwargs = {"rng": rng} if solver.stochastic else {}
        x_start = np.clip(x0, lo, hi) if clip else x0

        t0 = time.perf_counter()
        try:
            native = solver.invoke(
                x_start,
                fn,
                gr,
                lo if bounded and solver.supports_bounds else None,
                hi if bounded and solver.supports_bounds else None,
                dict(options),
                **kwargs,
            )
            res = solver.normalize(native)
        except GradientEvaluationError as exc:
            res = self._failed(x0, exc)
        except Exception as exc:
            res = self._failed(x0, SolverExecutionError(solver.name, exc))
        elapsed = time.perf_counter() - t0

        par = np.clip(res.par, lo, hi) if clip and res.success else res.par
        return res.replace(
            par=par,
            counts={"function": fn.calls, "gradient": gr.calls if gr is not None else 0},
            elapsed=elapsed,
            method=solver.name,
        )


    @staticmethod
    def _failed(x0, error: Exception) -> OptimizationResult:
        logger.warning("%s", error)
        return OptimizationResult(
            par=np.asarray(x0, dtype=float).copy(),
            value=np.nan,
            convergence=Convergence.FAILED,
            message=str(error),
            error=error,
        )


    def __repr__(self) -> str:
        return f"SolverAdapter(bounds_policy={self.bounds_policy!r})"
