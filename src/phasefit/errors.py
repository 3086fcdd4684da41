#########################################################################################
##
##                                 CALIBRATION ERRORS
##                                 (phasefit/errors.py)
##
#########################################################################################


# BASE ==================================================================================

class CalibrationError(Exception):
    """Base class for every error raised by the calibration engine."""


# VALIDATION ERRORS =====================================================================
#
# Raised eagerly, before the objective function is evaluated even once.

class ShapeError(CalibrationError, ValueError):
    """Length or structure mismatch between the parameter vector and any
    aligned quantity (bounds, phases, active mask, later vectors)."""


class BoundsError(CalibrationError, ValueError):
    """Inconsistent bounds: ``lower > upper``, an initial value outside its
    bounds, or a missing initial value without two finite bounds."""


class UnknownMethodError(CalibrationError, ValueError):
    """Requested Solver name is not registered."""

    def __init__(self, method, available=()):
        self.method = method
        self.available = tuple(available)
        msg = f"Unknown method '{method}'"
        if self.available:
            msg += f", available methods: {', '.join(self.available)}"
        super().__init__(msg)


class UnsupportedConstraintError(CalibrationError, ValueError):
    """Bounded problem routed to a backend that cannot handle bounds."""


# EXECUTION ERRORS ======================================================================
#
# Raised while a phase is running. The phase scheduler records them in the
# phase result instead of letting them abort the whole calibration.

class GradientEvaluationError(CalibrationError, RuntimeError):
    """At least one finite-difference evaluation failed or was not finite."""


class SolverExecutionError(CalibrationError, RuntimeError):
    """A backend raised during its own search."""

    def __init__(self, method, cause):
        self.method = method
        self.cause = cause
        super().__init__(f"Solver '{method}' failed: {type(cause).__name__}: {cause}")
