#########################################################################################
##
##                               CONTROL OPTIONS
##                               (opt/control.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Iterator

from .gradient import GRADIENT_METHODS


__all__ = ["Control", "ENGINE_KEYS", "FAILURE_POLICIES", "BOUNDS_POLICIES"]


# CONSTANTS =============================================================================

FAILURE_POLICIES = ("continue", "abort")
BOUNDS_POLICIES = ("reject", "clip")

#keys consumed by the engine, everything else goes to the backend verbatim
ENGINE_KEYS = frozenset({
    "ncores",
    "parallel",
    "gr.method",
    "gr.step",
    "on.failure",
    "bounds.policy",
    "verbose",
})

_DEFAULTS = {
    "maxit": None,
    "ncores": None,
    "parallel": False,
    "gr.method": "central",
    "gr.step": None,
    "on.failure": "continue",
    "bounds.policy": "reject",
    "verbose": 0,
}


# CONTROL ===============================================================================

class Control(Mapping):
    """Read-only option mapping for one calibration call.

    Recognized keys are validated on construction; unknown keys are kept
    untouched and forwarded to the selected backend Solver.

    Parameters
    ----------
    options : mapping, optional
        User options, see the table below.

    Notes
    -----
    ===============  ======  ==============  ========================================
    key              type    default         meaning
    ===============  ======  ==============  ========================================
    maxit            int     backend         iteration cap forwarded to the backend
    ncores           int     None            parallel width, 1 disables parallelism
    parallel         bool    False           evaluate perturbations / replicates
                                             on the caller's pool
    gr.method        str     "central"       forward / central / richardson
    gr.step          float   per method      relative finite-difference step
    on.failure       str     "continue"      continue / abort after a failed phase
    bounds.policy    str     "reject"        reject / clip for unbounded backends
    verbose          int     0               print a line per phase when >= 1
    ===============  ======  ==============  ========================================
    """

    def __init__(self, options: Mapping[str, Any] | None = None):
        opts = dict(_DEFAULTS)
        opts.update(dict(options or {}))

        if opts["maxit"] is not None:
            opts["maxit"] = int(opts["maxit"])
            if opts["maxit"] < 1:
                raise ValueError(f"maxit must be >= 1, got {opts['maxit']}")

        if opts["ncores"] is not None:
            opts["ncores"] = int(opts["ncores"])
            if opts["ncores"] < 1:
                raise ValueError(f"ncores must be >= 1, got {opts['ncores']}")

        if opts["gr.method"] not in GRADIENT_METHODS:
            raise ValueError(
                f"Unknown gr.method '{opts['gr.method']}', expected one of {GRADIENT_METHODS}"
            )

        if opts["gr.step"] is not None:
            opts["gr.step"] = float(opts["gr.step"])
            if not opts["gr.step"] > 0:
                raise ValueError(f"gr.step must be > 0, got {opts['gr.step']}")

        if opts["on.failure"] not in FAILURE_POLICIES:
            raise ValueError(
                f"Unknown on.failure policy '{opts['on.failure']}', expected one of {FAILURE_POLICIES}"
            )

        if opts["bounds.policy"] not in BOUNDS_POLICIES:
            raise ValueError(
                f"Unknown bounds.policy '{opts['bounds.policy']}', expected one of {BOUNDS_POLICIES}"
            )

        opts["parallel"] = bool(opts["parallel"])
        opts["verbose"] = int(opts["verbose"])

        self._options = MappingProxyType(opts)


    def __getitem__(self, key: str) -> Any:
        return self._options[key]


    def __iter__(self) -> Iterator[str]:
        return iter(self._options)


    def __len__(self) -> int:
        return len(self._options)


    def solver_options(self) -> dict:
        """Options forwarded to the backend: ``maxit`` plus pass-through keys."""
        return {
            k: v for k, v in self._options.items()
            if k not in ENGINE_KEYS and not (k == "maxit" and v is None)
        }


    def replace(self, **changes) -> "Control":
        """Copy with some options changed (dotted keys via ``**{"gr.method": ...}``)."""
        opts = dict(self._options)
        opts.update(changes)
        return Control(opts)


    def __repr__(self) -> str:
        return f"Control({dict(self._options)!r})"
