from importlib import metadata

try:
    __version__ = metadata.version("phasefit")
except Exception:
    __version__ = "unknown"

from .opt import (
    calibrate,
    CalibrationEngine,
    CalibrationResult,
    OptimizationResult,
    Convergence,
    ParameterCodec,
    Mask,
    ReplicatedObjective,
    GradientEstimator,
    PhaseScheduler,
    Control,
)
from .solvers import SolverAdapter, register, available_methods
from .errors import (
    CalibrationError,
    ShapeError,
    BoundsError,
    UnknownMethodError,
    UnsupportedConstraintError,
    GradientEvaluationError,
    SolverExecutionError,
)
