#########################################################################################
##
##                          CALLER-OWNED WORKER POOL CONTEXT
##                                (opt/parallel.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
from concurrent.futures import Executor, wait
from typing import Any, Callable, Sequence

import numpy as np


logger = logging.getLogger(__name__)


# HELPERS ===============================================================================

def _run_chunk(tasks: Sequence[Callable[[], Any]]) -> list:
    """Run a slice of tasks in order inside one worker."""
    return [task() for task in tasks]


# WORKERS ===============================================================================

class Workers:
    """Thin view over an executor created and owned by the caller.

    The engine never creates or shuts down a pool; it only submits batches
    of independent zero-argument tasks and blocks until the whole batch has
    completed or failed.

    Parameters
    ----------
    pool : concurrent.futures.Executor, optional
        Caller-owned executor. ``None`` means serial evaluation.
    ncores : int, optional
        Number of chunks a batch is split into. ``1`` disables parallel
        evaluation; ``None`` submits every task separately.

    Notes
    -----
    Results are returned in task order, independent of completion order.
    If any task raises, the first exception (in task order) is re-raised
    after every submitted unit has finished, so no partial batch is ever
    returned. With a ``ProcessPoolExecutor`` every task must be picklable.
    """

    def __init__(self, pool: Executor | None = None, ncores: int | None = None):
        if ncores is not None:
            ncores = int(ncores)
            if ncores < 1:
                raise ValueError(f"ncores must be >= 1, got {ncores}")
        self.pool = pool
        self.ncores = ncores


    @property
    def is_parallel(self) -> bool:
        return self.pool is not None and (self.ncores is None or self.ncores > 1)


    def run(self, tasks: Sequence[Callable[[], Any]]) -> list:
        """Evaluate *tasks* and return their results in order."""
        tasks = list(tasks)
        if not self.is_parallel or len(tasks) < 2:
            return _run_chunk(tasks)

        if self.ncores is None or self.ncores >= len(tasks):
            chunks = [[t] for t in tasks]
        else:
            bounds = np.array_split(np.arange(len(tasks)), self.ncores)
            chunks = [[tasks[i] for i in idx] for idx in bounds if idx.size]

        logger.debug("dispatching %d tasks in %d chunks", len(tasks), len(chunks))

        futures = [self.pool.submit(_run_chunk, chunk) for chunk in chunks]
        wait(futures)

        results: list = []
        for fut in futures:
            exc = fut.exception()
            if exc is not None:
                raise exc
            results.extend(fut.result())
        return results


    def __repr__(self) -> str:
        pool = type(self.pool).__name__ if self.pool is not None else None
        return f"Workers(pool={pool}, ncores={self.ncores})"


SERIAL = Workers()
