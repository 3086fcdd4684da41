#########################################################################################
##
##              phasefit example: stochastic objective with replicates
##
##  Objective:  sphere evaluated after a random displacement (sd = 0.1)
##  Fit:        5 replicates per evaluation, averaged, on a caller-owned pool
##
##  Each replicate gets its own child generator of `rng`, so the run is
##  reproducible and independent of how the pool schedules the trials.
##  With replicates > 1 the default Solver is the AHR-ES evolution strategy.
##
#########################################################################################

# IMPORTS ===============================================================================

from concurrent.futures import ThreadPoolExecutor

import numpy as np

from phasefit import calibrate
from phasefit.utils import sphere_noisy


# Run Example ===========================================================================

if __name__ == '__main__':

    par = {"head": [1.0, 2.0], "tail": [3.0, None, 5.0]}
    phases = {"head": [1, 2], "tail": [3, 2, 1]}

    with ThreadPoolExecutor(max_workers=4) as pool:
        res = calibrate(
            par=par,
            fn=sphere_noisy,
            lower=-100,
            upper=100,
            phases=phases,
            replicates=5,
            parallel=True,
            pool=pool,
            rng=np.random.default_rng(2024),
            control={"verbose": 1, "ncores": 4},
        )

    print(res)
    for name, value in zip(res.names, res.x):
        print(f"  {name:8s} = {value: .4f}")
    print("elapsed over all phases: %.2f s" % res.total_elapsed)
