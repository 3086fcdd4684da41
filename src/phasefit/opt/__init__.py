#########################################################################################
##
##                        PHASED CALIBRATION ENGINE PUBLIC API
##                               (opt/__init__.py)
##
#########################################################################################

from .result import Convergence, OptimizationResult, CalibrationResult
from .codec import ParameterCodec, Skeleton, capture_skeleton, flatten, unflatten
from .mask import Mask, project, expand, active_for_phase, phase_sequence
from .parallel import Workers
from .objective import ReplicatedObjective
from .gradient import GradientEstimator, GRADIENT_METHODS
from .control import Control
from .scheduler import PhaseScheduler
from .engine import CalibrationEngine, calibrate
