#########################################################################################
##
##                          REPLICATE-AVERAGING OBJECTIVE WRAPPER
##                                (opt/objective.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable

import numpy as np

from .parallel import SERIAL, Workers


__all__ = ["ReplicatedObjective", "accepts_keyword"]


# HELPERS ===============================================================================

def accepts_keyword(fn: Callable, name: str) -> bool:
    """True if *fn* can be called with keyword argument *name*."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    for p in sig.parameters.values():
        if p.kind == inspect.Parameter.VAR_KEYWORD:
            return True
        if p.name == name and p.kind in (
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.KEYWORD_ONLY,
        ):
            return True
    return False


def _as_value(raw: Any) -> float:
    arr = np.asarray(raw, dtype=float)
    if arr.size != 1:
        raise ValueError(f"Objective must return a scalar, got shape {arr.shape}")
    return float(arr.reshape(-1)[0])


def _evaluate_trial(fn: Callable, par: Any, kwargs: dict) -> float:
    """One replicate: module level so process pools can pickle it."""
    return _as_value(fn(par, **kwargs))


# OBJECTIVE =============================================================================

class ReplicatedObjective:
    """Masked objective averaged over ``replicates`` independent trials.

    Calling the wrapper with a reduced (active-only) vector expands it to the
    caller's full structure, evaluates the raw objective ``replicates`` times
    and returns the arithmetic mean.

    Parameters
    ----------
    fn : callable
        Raw objective ``fn(par, **fn_kwargs) -> float`` in the caller's
        parameter structure.
    decode : callable
        Maps a reduced vector to the structured full parameter value.
    replicates : int
        Number of trials per evaluation (``>= 1``).
    rng : numpy.random.Generator, optional
        When given and *fn* accepts an ``rng`` keyword, every trial receives
        its own child generator spawned from *rng* before any trial runs.
    workers : Workers, optional
        Worker pool view; replicate trials of one evaluation run in parallel
        when it is parallel and ``replicates > 1``.
    fn_kwargs : dict, optional
        Extra keyword arguments forwarded to *fn*.

    Notes
    -----
    With ``replicates == 1`` the wrapper performs exactly one call and no
    averaging. The wrapper never seeds or touches global random state.
    """

    def __init__(
        self,
        fn: Callable,
        decode: Callable[[np.ndarray], Any],
        replicates: int = 1,
        *,
        rng: np.random.Generator | None = None,
        workers: Workers | None = None,
        fn_kwargs: dict | None = None,
    ):
        if int(replicates) != replicates or replicates < 1:
            raise ValueError(f"replicates must be an integer >= 1, got {replicates}")
        self.fn = fn
        self.decode = decode
        self.replicates = int(replicates)
        self.rng = rng
        self.workers = workers if workers is not None else SERIAL
        self.fn_kwargs = dict(fn_kwargs or {})
        self._pass_rng = rng is not None and accepts_keyword(fn, "rng")

        #number of raw objective calls issued so far
        self.n_trials = 0


    def trials(self, reduced) -> list[Callable[[], float]]:
        """Independent zero-argument tasks, one per replicate, for *reduced*.

        Expansion and child-generator spawning happen here, in the calling
        thread, so the tasks can be run by any worker in any order.
        """
        par = self.decode(np.asarray(reduced, dtype=float))

        if self._pass_rng:
            children = self.rng.spawn(self.replicates)
            kwargs_list = [dict(self.fn_kwargs, rng=child) for child in children]
        else:
            kwargs_list = [self.fn_kwargs] * self.replicates

        self.n_trials += self.replicates
        return [functools.partial(_evaluate_trial, self.fn, par, kw) for kw in kwargs_list]


    @staticmethod
    def reduce(values) -> float:
        """Average of the trial values of one evaluation."""
        if len(values) == 1:
            return float(values[0])
        return float(np.mean(values))


    def __call__(self, reduced) -> float:
        tasks = self.trials(reduced)
        if len(tasks) == 1:
            return tasks[0]()
        return self.reduce(self.workers.run(tasks))


    evaluate = __call__


    def __repr__(self) -> str:
        return f"ReplicatedObjective(replicates={self.replicates}, workers={self.workers!r})"
