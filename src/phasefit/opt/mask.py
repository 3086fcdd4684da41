#########################################################################################
##
##                          ACTIVE PARAMETER MASK / PROJECTION
##                                  (opt/mask.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from ..errors import ShapeError


__all__ = [
    "Mask",
    "project",
    "expand",
    "active_for_phase",
    "phase_sequence",
]


# FUNCTIONS =============================================================================

def project(full, active) -> np.ndarray:
    """Select the active entries of *full*, preserving order."""
    full_arr = np.asarray(full, dtype=float).reshape(-1)
    act = np.asarray(active, dtype=bool).reshape(-1)
    if full_arr.size != act.size:
        raise ShapeError(f"Vector of length {full_arr.size} does not match mask of length {act.size}")
    return full_arr[act].copy()


def expand(reduced, full_template, active) -> np.ndarray:
    """Write *reduced* into the active positions of a copy of *full_template*.

    Fixed positions keep the template values.
    """
    out = np.array(full_template, dtype=float).reshape(-1)
    act = np.asarray(active, dtype=bool).reshape(-1)
    red = np.asarray(reduced, dtype=float).reshape(-1)
    if out.size != act.size:
        raise ShapeError(f"Template of length {out.size} does not match mask of length {act.size}")
    if red.size != int(act.sum()):
        raise ShapeError(f"Expected {int(act.sum())} active values, got {red.size}")
    out[act] = red
    return out


def phase_sequence(phases) -> list[int]:
    """Sorted distinct positive phase numbers, ``[1]`` when none is declared."""
    ph = np.asarray(phases, dtype=float).reshape(-1)
    positive = sorted({int(p) for p in ph if p > 0})
    return positive or [1]


def active_for_phase(phases, phase: int) -> np.ndarray:
    """Active flags for *phase*: ``0 < phases[i] <= phase``."""
    ph = np.asarray(phases, dtype=float).reshape(-1)
    return (ph > 0) & (ph <= phase)


# MASK ==================================================================================

class Mask:
    """Immutable active/fixed selector over a full parameter vector.

    Parameters
    ----------
    active : array_like of bool
        Full-length flags, ``True`` for parameters optimized in this phase.
    lower, upper : array_like, optional
        Full-length bounds, default ``-inf`` / ``+inf``.

    Notes
    -----
    A new mask is built per phase, masks are never mutated. The round-trip
    law ``expand(project(full), full) == full`` holds for every ``full``.
    """

    def __init__(self, active, lower=None, upper=None):
        act = np.array(active, dtype=bool).reshape(-1)
        act.setflags(write=False)
        self.active = act
        self.size = act.size

        n = self.size
        lo = np.full(n, -np.inf) if lower is None else np.array(lower, dtype=float).reshape(-1)
        hi = np.full(n, np.inf) if upper is None else np.array(upper, dtype=float).reshape(-1)
        if lo.size != n or hi.size != n:
            raise ShapeError(f"Bounds of length {lo.size}/{hi.size} do not match mask of length {n}")
        lo.setflags(write=False)
        hi.setflags(write=False)
        self.lower = lo
        self.upper = hi


    @classmethod
    def for_phase(cls, phases, phase: int, lower=None, upper=None) -> "Mask":
        """Mask of the parameters active in *phase*."""
        return cls(active_for_phase(phases, phase), lower, upper)


    @property
    def n_active(self) -> int:
        return int(self.active.sum())


    @property
    def is_empty(self) -> bool:
        """True when no parameter is active, the phase is then a no-op."""
        return self.n_active == 0


    @property
    def indices(self) -> np.ndarray:
        """Full-vector indices of the active parameters, in order."""
        return np.flatnonzero(self.active)


    def project(self, full) -> np.ndarray:
        return project(full, self.active)


    def expand(self, reduced, full_template) -> np.ndarray:
        return expand(reduced, full_template, self.active)


    def project_bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Active-only ``(lower, upper)``."""
        return self.lower[self.active].copy(), self.upper[self.active].copy()


    @property
    def has_bounds(self) -> bool:
        """True when any active parameter has a finite bound."""
        lo, hi = self.project_bounds()
        return bool(np.any(np.isfinite(lo)) or np.any(np.isfinite(hi)))


    def __repr__(self) -> str:
        return f"Mask(active={self.n_active}/{self.size})"
