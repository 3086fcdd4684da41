#########################################################################################
##
##                           BACKEND SOLVER REGISTRY AND ADAPTER
##                               (solvers/__init__.py)
##
#########################################################################################

from ._solver import (
    Solver,
    SolverAdapter,
    register,
    unregister,
    get_solver,
    available_methods,
    method_chain,
    normalize_scipy,
)

#built-in backends register themselves on import
from . import scipy_local, scipy_global, ahres
