#########################################################################################
##
##               phasefit example: phased calibration of a deterministic model
##
##  Objective:  f(x) = sum(x**2)   (5 parameters, one without a start value)
##  Phases:     [1, 2, 3, 2, 1]    parameters are released in three stages
##
##  Start here. The missing start value is placed at the midpoint of its
##  bounds, phase 1 fits x0 and x4, phase 2 adds x1 and x3, phase 3 adds x2.
##
#########################################################################################

# IMPORTS ===============================================================================

import logging

import numpy as np

from phasefit import calibrate
from phasefit.utils import sphere


# Run Example ===========================================================================

if __name__ == '__main__':

    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    res = calibrate(
        par=[1, 2, 3, None, 5],
        fn=sphere,
        lower=[-100] * 5,
        upper=[100] * 5,
        phases=[1, 2, 3, 2, 1],
        hessian=True,
        control={"verbose": 1},
    )

    print(res)
    for h in res.history:
        print(f"  phase {h.phase}: value = {h.value:.3e}  active = {np.flatnonzero(h.active)}")

    print("Hessian at the solution:")
    print(np.round(res.hessian, 4))
    print("total function calls:", res.total_counts["function"])
