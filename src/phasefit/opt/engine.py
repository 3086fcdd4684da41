#########################################################################################
##
##                          PHASED CALIBRATION ENTRY POINT
##                                 (opt/engine.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
import time
import warnings
from concurrent.futures import Executor
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from ..errors import BoundsError, GradientEvaluationError, ShapeError
from ..solvers import SolverAdapter
from .codec import ParameterCodec
from .control import Control
from .gradient import GradientEstimator
from .mask import Mask, phase_sequence
from .parallel import SERIAL, Workers
from .result import CalibrationResult
from .scheduler import PhaseScheduler, default_method, per_phase


logger = logging.getLogger(__name__)

__all__ = ["CalibrationEngine", "calibrate"]


# ENGINE ================================================================================

class CalibrationEngine:
    """Validated multi-phase calibration problem.

    All checks run in the constructor, before the objective is evaluated
    even once; :meth:`run` then drives the phases and assembles the result.

    Parameters
    ----------
    par : sequence, array or mapping
        Initial parameter value. Missing entries (``None`` / NaN) start at
        the midpoint of their bounds, which must then both be finite.
    fn : callable
        Objective ``fn(par, **fn_kwargs) -> float`` in the structure of
        *par*. If it accepts an ``rng`` keyword and *rng* is given, each
        replicate receives its own child generator.
    gr : callable, optional
        Gradient of *fn*, returning a flat vector (or the structure of
        *par*). Finite differences are used when omitted.
    method : str, tuple, list or dict, optional
        Solver name; a tuple is a solver chain run within each phase; a
        list gives one name or chain per phase; a dict maps phase numbers
        to names or chains. Defaults to ``"L-BFGS-B"``, or ``"AHR-ES"``
        for phases with ``replicates > 1``.
    lower, upper : scalar, sequence or mapping, optional
        Bounds, default ``-inf`` / ``+inf``.
    phases : sequence or mapping of int, optional
        Phase in which each parameter becomes active; negative values fix
        the parameter at its initial value; unset entries mean phase 1.
    control : mapping, optional
        Options, see :class:`~phasefit.opt.control.Control`.
    hessian : bool
        Compute a finite-difference Hessian of the full objective at the
        final solution. Fixed parameters get zero rows and columns.
    replicates : int, sequence or mapping
        Replicate count for all phases, or one per phase.
    parallel : bool
        Evaluate finite-difference points and replicate trials on *pool*.
    active : sequence or mapping of bool, optional
        ``False`` fixes a parameter, same as a negative phase.
    pool : concurrent.futures.Executor, optional
        Caller-owned worker pool, used only when *parallel* is enabled.
    rng : numpy.random.Generator or int, optional
        Random source for replicates and stochastic Solvers.
    fn_kwargs : dict, optional
        Extra keyword arguments for *fn* and *gr*.

    Raises
    ------
    ShapeError, BoundsError, UnknownMethodError, UnsupportedConstraintError
        Eagerly, for inconsistent inputs.
    """

    def __init__(
        self,
        par: Any,
        fn: Callable,
        gr: Callable | None = None,
        method: str | Sequence | Mapping | None = None,
        lower: Any = None,
        upper: Any = None,
        phases: Any = None,
        control: Mapping | None = None,
        hessian: bool = False,
        replicates: int | Sequence[int] | Mapping = 1,
        parallel: bool = False,
        *,
        active: Any = None,
        pool: Executor | None = None,
        rng: np.random.Generator | int | None = None,
        fn_kwargs: dict | None = None,
    ):
        if not callable(fn):
            raise TypeError("fn must be callable")
        if gr is not None and not callable(gr):
            raise TypeError("gr must be callable or None")

        self.fn = fn
        self.gr = gr
        self.hessian = bool(hessian)
        self.fn_kwargs = dict(fn_kwargs or {})
        self.control = Control(control)

        # ── Structure and aligned vectors ────────────────────────────────────
        self.codec = ParameterCodec(par)
        n = self.codec.size
        if n == 0:
            raise ShapeError("par must contain at least one parameter")

        x0 = self.codec.flatten(par)
        self.lower = self.codec.align(lower, -np.inf, "lower")
        self.upper = self.codec.align(upper, np.inf, "upper")
        self.phases = self._resolve_phases(phases, active)
        self.x0 = self._resolve_initial(x0)

        # ── Phase settings ──────────────────────────────────────────────────
        self.sequence = phase_sequence(self.phases)
        self.replicates = self._resolve_replicates(replicates)
        self.methods = [
            m if m is not None else default_method(r)
            for m, r in zip(per_phase(method, self.sequence, "method"), self.replicates)
        ]

        adapter = SolverAdapter(bounds_policy=self.control["bounds.policy"])
        for p, m in zip(self.sequence, self.methods):
            mask = Mask.for_phase(self.phases, p, self.lower, self.upper)
            if mask.is_empty:
                continue
            lo, hi = mask.project_bounds() if mask.has_bounds else (None, None)
            adapter.validate(m, lo, hi)

        # ── Workers and randomness ───────────────────────────────────────────
        self.workers = self._resolve_workers(parallel or self.control["parallel"], pool)
        self.rng = np.random.default_rng(rng) if rng is not None else None


    # VALIDATION HELPERS ----------------------------------------------------------------

    def _resolve_phases(self, phases, active) -> np.ndarray:
        ph = self.codec.align(phases, 1.0, "phases")
        if np.any(ph != np.round(ph)) or np.any(ph == 0):
            raise ValueError("phases must be non-zero integers (negative = fixed)")

        if active is not None:
            act = self.codec.align(active, 1.0, "active").astype(bool)
            ph = np.where(act, ph, -1.0)
        return ph.astype(int)


    def _resolve_initial(self, x0: np.ndarray) -> np.ndarray:
        lo, hi = self.lower, self.upper
        names = self.codec.names

        bad = np.flatnonzero(lo > hi)
        if bad.size:
            i = bad[0]
            raise BoundsError(f"Parameter '{names[i]}': lower bound {lo[i]} > upper bound {hi[i]}")

        x = x0.copy()
        for i in np.flatnonzero(np.isnan(x)):
            if not (np.isfinite(lo[i]) and np.isfinite(hi[i])):
                raise BoundsError(
                    f"Parameter '{names[i]}' has no initial value and needs finite "
                    f"lower and upper bounds (got [{lo[i]}, {hi[i]}])"
                )
            #missing start value: midpoint of the bounds
            x[i] = 0.5 * (lo[i] + hi[i])

        if not np.all(np.isfinite(x)):
            i = np.flatnonzero(~np.isfinite(x))[0]
            raise BoundsError(f"Parameter '{names[i]}': initial value {x[i]} is not finite")

        out = np.flatnonzero((x < lo) | (x > hi))
        if out.size:
            i = out[0]
            raise BoundsError(
                f"Parameter '{names[i]}': initial value {x[i]} outside bounds [{lo[i]}, {hi[i]}]"
            )
        return x


    def _resolve_replicates(self, replicates) -> list[int]:
        values = per_phase(replicates, self.sequence, "replicates", scalar_types=())
        out = []
        for r in values:
            r = 1 if r is None else r
            if int(r) != r or r < 1:
                raise ValueError(f"replicates must be integers >= 1, got {r}")
            out.append(int(r))
        return out


    def _resolve_workers(self, parallel: bool, pool: Executor | None) -> Workers:
        if not parallel:
            return SERIAL
        if pool is None:
            warnings.warn(
                "parallel=True but no worker pool was supplied, evaluating serially",
                UserWarning,
                stacklevel=3,
            )
            return SERIAL
        return Workers(pool, self.control["ncores"])


    # EXECUTION -------------------------------------------------------------------------

    def scheduler(self) -> PhaseScheduler:
        return PhaseScheduler(
            self.fn,
            self.codec,
            self.x0,
            self.lower,
            self.upper,
            self.phases,
            self.methods,
            self.replicates,
            self.control,
            gr=self.gr,
            workers=self.workers,
            rng=self.rng,
            fn_kwargs=self.fn_kwargs,
        )


    def run(self) -> CalibrationResult:
        """Run every phase and return the final result with its history."""
        t0 = time.perf_counter()
        sched = self.scheduler()
        history = sched.run()
        last = history[-1]

        value = last.value if last.success else sched.current_value
        hess = self._hessian(sched) if self.hessian and last.success else None
        if self.hessian and not last.success:
            warnings.warn("Hessian not computed: the last phase failed", RuntimeWarning, stacklevel=2)

        logger.info(
            "calibration finished in %.3g s: %s, value=%.6g",
            time.perf_counter() - t0, last.convergence, value,
        )

        return CalibrationResult(
            par=self.codec.unflatten(sched.current),
            x=sched.current.copy(),
            value=float(value),
            convergence=last.convergence,
            counts=dict(last.counts),
            elapsed=last.elapsed,
            method=last.method,
            message=last.message,
            history=list(history),
            hessian=hess,
            names=list(self.codec.names),
            phases=[res.phase for res in history],
        )


    def _hessian(self, sched: PhaseScheduler) -> np.ndarray | None:
        """Full-size Hessian at the final vector; fixed rows / columns are zero."""
        n = self.codec.size
        mask = Mask.for_phase(self.phases, self.sequence[-1], self.lower, self.upper)
        H = np.zeros((n, n))
        if mask.is_empty:
            return H

        objective = sched.objective_for(mask, sched.current, self.replicates[-1])
        estimator = GradientEstimator(workers=self.workers)
        try:
            H_red = estimator.hessian(objective, mask.project(sched.current))
        except GradientEvaluationError as exc:
            warnings.warn(f"Hessian evaluation failed: {exc}", RuntimeWarning, stacklevel=3)
            return None

        idx = mask.indices
        H[np.ix_(idx, idx)] = H_red
        return H


    def __repr__(self) -> str:
        return (
            f"CalibrationEngine(n={self.codec.size}, phases={self.sequence}, "
            f"methods={self.methods}, replicates={self.replicates})"
        )


# ENTRY POINT ===========================================================================

def calibrate(
    par: Any,
    fn: Callable,
    gr: Callable | None = None,
    method: str | Sequence | Mapping | None = None,
    lower: Any = None,
    upper: Any = None,
    phases: Any = None,
    control: Mapping | None = None,
    hessian: bool = False,
    replicates: int | Sequence[int] | Mapping = 1,
    parallel: bool = False,
    **kwargs,
) -> CalibrationResult:
    """Calibrate *par* by minimizing *fn* over ordered phases.

    Thin wrapper around :class:`CalibrationEngine`; see there for every
    argument. Keyword-only extras: ``active``, ``pool``, ``rng``,
    ``fn_kwargs``.

    Returns
    -------
    CalibrationResult
        ``par`` in the caller's structure, status of the last executed
        phase, and the per-phase ``history``.

    Example
    -------
    .. code-block:: python

        from phasefit import calibrate

        res = calibrate(
            par=[1, 2, 3, None, 5],
            fn=lambda x: sum(v**2 for v in x),
            lower=[-100] * 5,
            upper=[100] * 5,
            phases=[1, 2, 3, 2, 1],
        )
        res.value        # ~0
        res.history      # one OptimizationResult per phase
    """
    engine = CalibrationEngine(
        par,
        fn,
        gr=gr,
        method=method,
        lower=lower,
        upper=upper,
        phases=phases,
        control=control,
        hessian=hessian,
        replicates=replicates,
        parallel=parallel,
        **kwargs,
    )
    return engine.run()
