########################################################################################
##
##                                  TESTS FOR
##                              'solvers/ahres.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from phasefit.opt.result import Convergence
from phasefit.solvers import SolverAdapter, normalize_scipy
from phasefit.solvers.ahres import ahres


# HELPERS ==============================================================================

def sphere(x):
    return float(np.sum(np.square(x)))


# TESTS ================================================================================

class TestAHRES:

    def test_sphere_converges(self):
        res = ahres(sphere, [3.0, -2.0, 1.0], [-5.0] * 3, [5.0] * 3, rng=1)
        assert res.fun < 1e-6
        np.testing.assert_allclose(res.x, 0.0, atol=1e-3)

    def test_same_seed_same_result(self):
        a = ahres(sphere, [1.0, 1.0], maxit=30, rng=7)
        b = ahres(sphere, [1.0, 1.0], maxit=30, rng=7)
        np.testing.assert_array_equal(a.x, b.x)
        assert a.nfev == b.nfev

    def test_offspring_stay_in_box(self):
        seen = []

        def f(x):
            seen.append(np.array(x))
            return sphere(np.asarray(x) + 10.0)

        res = ahres(f, [0.5, 0.5], [0.0, 0.0], [1.0, 1.0], maxit=200, rng=0)
        pts = np.array(seen)
        assert np.all(pts >= 0.0) and np.all(pts <= 1.0)
        #minimum of the shifted sphere on the box is the lower corner
        np.testing.assert_allclose(res.x, [0.0, 0.0], atol=0.05)

    def test_generation_cap(self):
        res = ahres(sphere, [1.0], maxit=3, popsize=6, rng=0)
        assert res.nit == 3
        assert res.nfev == 3 * 6 + 1
        assert normalize_scipy(res).convergence is Convergence.MAX_ITERATIONS

    def test_non_finite_offspring_rank_last(self):
        def f(x):
            return np.inf if x[0] > 0.5 else sphere(x)

        res = ahres(f, [0.0], maxit=50, rng=3)
        assert np.isfinite(res.fun)

    def test_through_adapter(self):
        res = SolverAdapter().run(
            "AHR-ES", [2.0, -2.0], sphere, None, [-4.0, -4.0], [4.0, 4.0],
            {"maxit": 400}, rng=np.random.default_rng(5),
        )
        assert res.success
        assert res.method == "AHR-ES"
        assert res.value < 1e-4
