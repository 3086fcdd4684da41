#########################################################################################
##
##                               RESULT CONTAINERS
##                                (opt/result.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


__all__ = ["Convergence", "OptimizationResult", "CalibrationResult"]


# CONVERGENCE ===========================================================================

class Convergence(str, Enum):
    """Normalized termination status of a Solver run."""

    CONVERGED = "converged"
    MAX_ITERATIONS = "max-iterations"
    FAILED = "failed"


    def __str__(self) -> str:
        return self.value


def _zero_counts() -> dict:
    return {"function": 0, "gradient": 0}


# OPTIMIZATION RESULT ===================================================================

@dataclass(frozen=True)
class OptimizationResult:
    """Normalized result of one Solver run or one phase.

    Attributes
    ----------
    par : np.ndarray
        Parameter vector; reduced for a Solver run, full length once the
        phase scheduler has expanded it.
    value : float
        Objective value at ``par`` (NaN when the run failed before any value
        was known).
    convergence : Convergence
        ``converged``, ``max-iterations`` or ``failed``.
    counts : dict
        ``{"function": int, "gradient": int}`` calls issued by the Solver.
    elapsed : float
        Wall time in seconds.
    method : str
        Solver name, or comma-joined names for a solver chain.
    message : str
        Backend message or error text.
    error : Exception, optional
        Triggering error of a failed run.
    phase : int, optional
        Phase number, set by the phase scheduler.
    active : np.ndarray, optional
        Full-length active mask of the phase.
    iterations : int, optional
        Backend iteration count when reported.
    """

    par: np.ndarray
    value: float
    convergence: Convergence
    counts: dict = field(default_factory=_zero_counts)
    elapsed: float = 0.0
    method: str = ""
    message: str = ""
    error: BaseException | None = None
    phase: int | None = None
    active: np.ndarray | None = None
    iterations: int | None = None


    @property
    def success(self) -> bool:
        return self.convergence is not Convergence.FAILED


    def replace(self, **changes) -> "OptimizationResult":
        return dataclasses.replace(self, **changes)


    def __repr__(self) -> str:
        phase = f"phase={self.phase}, " if self.phase is not None else ""
        return (
            f"OptimizationResult({phase}{self.convergence.value.upper()}, "
            f"value={self.value:.6g}, method={self.method!r}, "
            f"nfev={self.counts.get('function', 0)}, par={self.par})"
        )


# CALIBRATION RESULT ====================================================================

@dataclass(frozen=True)
class CalibrationResult:
    """Final result of a calibration, with per-phase history.

    The status fields (``value``, ``convergence``, ``counts``, ``elapsed``,
    ``method``, ``message``) are those of the last executed phase. ``par``
    is returned in the caller's original structure, ``x`` holds the same
    values as a flat vector.
    """

    par: Any
    x: np.ndarray
    value: float
    convergence: Convergence
    counts: dict
    elapsed: float
    method: str
    message: str = ""
    history: list = field(default_factory=list)
    hessian: np.ndarray | None = None
    names: list = field(default_factory=list)
    phases: list = field(default_factory=list)


    @property
    def success(self) -> bool:
        return self.convergence is not Convergence.FAILED


    @property
    def total_counts(self) -> dict:
        """Function / gradient counts summed over every executed phase."""
        total = _zero_counts()
        for res in self.history:
            for key in total:
                total[key] += int(res.counts.get(key, 0))
        return total


    @property
    def total_elapsed(self) -> float:
        return float(sum(res.elapsed for res in self.history))


    def __repr__(self) -> str:
        return (
            f"CalibrationResult({self.convergence.value.upper()}, value={self.value:.6g}, "
            f"phases={len(self.history)}, method={self.method!r}, x={self.x})"
        )
