#########################################################################################
##
##                           SEQUENTIAL PHASE STATE MACHINE
##                               (opt/scheduler.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from typing import Any, Callable, Sequence

import numpy as np

from ..errors import ShapeError
from ..solvers import SolverAdapter
from .codec import ParameterCodec
from .control import Control
from .gradient import GradientEstimator
from .mask import Mask, phase_sequence
from .objective import ReplicatedObjective
from .parallel import SERIAL, Workers
from .result import Convergence, OptimizationResult


logger = logging.getLogger(__name__)

__all__ = ["PhaseScheduler", "per_phase", "default_method"]


# PER-PHASE SETTINGS ====================================================================

DEFAULT_METHOD = "L-BFGS-B"
DEFAULT_STOCHASTIC_METHOD = "AHR-ES"


def default_method(replicates: int) -> str:
    """Solver used when none is requested.

    Averaged stochastic objectives go to the derivative-free evolutionary
    strategy, deterministic ones to a bounded quasi-Newton method.
    """
    return DEFAULT_STOCHASTIC_METHOD if replicates > 1 else DEFAULT_METHOD


def per_phase(value: Any, sequence: Sequence[int], name: str, *, scalar_types=(str, tuple)) -> list:
    """Spread a setting over the executed phases.

    * a scalar (or any instance of *scalar_types*) applies to every phase
    * any other ``list`` / ``tuple`` / ``np.ndarray`` gives one entry per
      phase, in phase order
    * a ``dict`` maps phase numbers to entries, missing phases get ``None``
    """
    n = len(sequence)

    if isinstance(value, Mapping):
        unknown = [p for p in value if p not in sequence]
        if unknown:
            raise ShapeError(f"'{name}' refers to phases {unknown} that are not executed")
        return [value.get(p) for p in sequence]

    if value is None or isinstance(value, scalar_types):
        return [value] * n

    if isinstance(value, (list, tuple, np.ndarray)):
        entries = list(value)
        if len(entries) != n:
            raise ShapeError(
                f"'{name}' has {len(entries)} entries but {n} phase(s) will run {list(sequence)}"
            )
        return entries

    if np.ndim(value) == 0:
        return [value] * n

    raise TypeError(f"Unsupported type for '{name}': {type(value).__name__}")


# SCHEDULER =============================================================================

class PhaseScheduler:
    """Runs the phases of one calibration strictly in order.

    For every distinct positive phase number ``p`` (sorted) the scheduler
    builds the active mask ``0 < phases[i] <= p``, projects the current best
    full vector and bounds onto it, wraps the objective (replicate averaging
    and masking), dispatches the reduced problem to the
    :class:`~phasefit.solvers.SolverAdapter` and expands the solution back to
    full length. That solution seeds the next phase.

    Parameters
    ----------
    fn : callable
        Raw objective in the caller's parameter structure.
    codec : ParameterCodec
        Structure codec of the parameters.
    x0 : np.ndarray
        Full initial vector (missing values already substituted).
    lower, upper, phases : np.ndarray
        Full-length bounds and phase numbers.
    methods : list
        One method name or chain per executed phase.
    replicates : list[int]
        One replicate count per executed phase.
    control : Control
        Options of the call.
    gr : callable, optional
        Analytic gradient of *fn* in the caller's structure.
    workers : Workers, optional
        Caller-owned pool view.
    rng : numpy.random.Generator, optional
        Random source for replicates and stochastic Solvers.
    fn_kwargs : dict, optional
        Extra keyword arguments forwarded to *fn* (and *gr*).

    Notes
    -----
    A failed phase is recorded with ``convergence = failed``. Under the
    ``continue`` policy the next phase starts from the last good vector
    and a ``RuntimeWarning`` is emitted; under ``abort`` no further phase
    runs.
    """

    def __init__(
        self,
        fn: Callable,
        codec: ParameterCodec,
        x0: np.ndarray,
        lower: np.ndarray,
        upper: np.ndarray,
        phases: np.ndarray,
        methods: list,
        replicates: list,
        control: Control,
        *,
        gr: Callable | None = None,
        workers: Workers | None = None,
        rng: np.random.Generator | None = None,
        fn_kwargs: dict | None = None,
    ):
        self.fn = fn
        self.gr = gr
        self.codec = codec
        self.lower = lower
        self.upper = upper
        self.phases = phases
        self.sequence = phase_sequence(phases)
        self.methods = methods
        self.replicates = replicates
        self.control = control
        self.workers = workers if workers is not None else SERIAL
        self.rng = rng
        self.fn_kwargs = dict(fn_kwargs or {})

        self.adapter = SolverAdapter(bounds_policy=control["bounds.policy"])
        self.estimator = GradientEstimator(
            method=control["gr.method"],
            step=control["gr.step"],
            workers=self.workers,
        )

        #running best full vector and the objective value that goes with it
        self.current = np.array(x0, dtype=float)
        self.current_value = np.nan
        self.history: list[OptimizationResult] = []


    # PROBLEM CONSTRUCTION --------------------------------------------------------------

    def objective_for(self, mask: Mask, template: np.ndarray, replicates: int) -> ReplicatedObjective:
        """Reduced, replicate-averaged objective around *template*."""
        template = np.array(template, dtype=float)
        codec = self.codec

        def decode(reduced):
            return codec.unflatten(mask.expand(reduced, template))

        return ReplicatedObjective(
            self.fn,
            decode,
            replicates,
            rng=self.rng,
            workers=self.workers,
            fn_kwargs=self.fn_kwargs,
        )


    def gradient_for(self, mask: Mask, objective: ReplicatedObjective) -> Callable:
        """Reduced gradient: the analytic one projected, or finite differences."""
        if self.gr is None:
            estimator = self.estimator
            return lambda reduced: estimator.gradient(objective, reduced)

        gr, codec, kwargs = self.gr, self.codec, self.fn_kwargs

        def gradient(reduced):
            raw = gr(objective.decode(np.asarray(reduced, dtype=float)), **kwargs)
            full = codec.flatten(raw) if isinstance(raw, Mapping) else np.asarray(raw, dtype=float).reshape(-1)
            if full.size != codec.size:
                raise ShapeError(f"Gradient has length {full.size}, expected {codec.size}")
            return mask.project(full)

        return gradient


    # EXECUTION -------------------------------------------------------------------------

    def run_phase(self, k: int) -> OptimizationResult:
        """Execute the *k*-th phase of the sequence and record its result."""
        p = self.sequence[k]
        mask = Mask.for_phase(self.phases, p, self.lower, self.upper)
        replicates = int(self.replicates[k])
        method = self.methods[k] or default_method(replicates)
        objective = self.objective_for(mask, self.current, replicates)

        if mask.is_empty:
            logger.info("phase %d: no active parameters, skipped", p)
            res = OptimizationResult(
                par=self.current.copy(),
                value=np.nan,
                convergence=Convergence.CONVERGED,
                method="none",
                message="No active parameters",
                phase=p,
                active=mask.active,
            )
            try:
                value = objective(np.zeros(0))
            except Exception as exc:
                logger.warning("objective failed at the fixed parameters: %s", exc)
                res = res.replace(
                    convergence=Convergence.FAILED,
                    message=f"Objective failed at the fixed parameters: {type(exc).__name__}: {exc}",
                    error=exc,
                )
            else:
                res = res.replace(value=value)
                self.current_value = value
            res = res.replace(counts={"function": objective.n_trials, "gradient": 0})
            self.history.append(res)
            return res

        logger.info(
            "phase %d: %d/%d active, method=%s, replicates=%d",
            p, mask.n_active, mask.size, method, replicates,
        )

        lo, hi = mask.project_bounds() if mask.has_bounds else (None, None)
        reduced = self.adapter.run(
            method,
            mask.project(self.current),
            objective,
            self.gradient_for(mask, objective),
            lo,
            hi,
            self.control.solver_options(),
            rng=self.rng,
        )

        res = reduced.replace(
            par=mask.expand(reduced.par, self.current),
            phase=p,
            active=mask.active,
        )
        self.history.append(res)

        if res.success:
            self.current = res.par.copy()
            self.current_value = res.value

        logger.info("phase %d: value=%.6g, %s", p, res.value, res.convergence)
        if self.control["verbose"] >= 1:
            print(
                f"  [phase {p}] {res.convergence.value:<14} value = {res.value:.6g}  "
                f"method = {res.method}  nfev = {res.counts['function']}"
            )
        return res


    def run(self) -> list[OptimizationResult]:
        """Run every phase in order and return the per-phase history."""
        for k, p in enumerate(self.sequence):
            res = self.run_phase(k)
            if res.success:
                continue

            if self.control["on.failure"] == "abort":
                logger.error("phase %d failed, aborting: %s", p, res.message)
                break

            warnings.warn(
                f"Phase {p} failed ({res.message}); continuing from the last "
                f"successful parameters",
                RuntimeWarning,
                stacklevel=2,
            )
        return self.history


    def __repr__(self) -> str:
        return f"PhaseScheduler(phases={self.sequence}, completed={len(self.history)})"
