########################################################################################
##
##                                  TESTS FOR
##                               'opt/gradient.py'
##
########################################################################################

# IMPORTS ==============================================================================

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from phasefit.errors import GradientEvaluationError
from phasefit.opt.gradient import GradientEstimator, default_step
from phasefit.opt.objective import ReplicatedObjective
from phasefit.opt.parallel import Workers


# HELPERS ==============================================================================

def sphere(x):
    return float(np.sum(np.square(x)))


def cubic(x):
    return float(np.sum(np.asarray(x) ** 3))


# TESTS ================================================================================

class TestGradient:

    @pytest.mark.parametrize("method", ["forward", "central", "richardson"])
    def test_sphere(self, method):
        x = np.array([1.0, -2.0, 3.0])
        g = GradientEstimator(method).gradient(sphere, x)
        np.testing.assert_allclose(g, 2 * x, atol=1e-5)

    @pytest.mark.parametrize("method", ["central", "richardson"])
    def test_cubic(self, method):
        x = np.array([0.5, -1.5])
        g = GradientEstimator(method).gradient(cubic, x)
        np.testing.assert_allclose(g, 3 * x ** 2, rtol=1e-6)

    def test_richardson_more_accurate_than_central_with_large_step(self):
        x = np.array([1.3])
        exact = 3 * x ** 2
        d_central = GradientEstimator("central", step=1e-2).gradient(cubic, x)
        d_rich = GradientEstimator("richardson", step=1e-2).gradient(cubic, x)
        assert abs(d_rich - exact)[0] < abs(d_central - exact)[0]

    def test_method_override_per_call(self):
        est = GradientEstimator("forward")
        g = est.gradient(sphere, [2.0], method="central")
        assert g[0] == pytest.approx(4.0, abs=1e-8)

    def test_evaluation_counts(self):
        calls = []

        def f(x):
            calls.append(1)
            return sphere(x)

        x = np.zeros(4)
        GradientEstimator("forward").gradient(f, x)
        assert len(calls) == 5
        calls.clear()
        GradientEstimator("central").gradient(f, x)
        assert len(calls) == 8
        calls.clear()
        GradientEstimator("richardson").gradient(f, x)
        assert len(calls) == 16

    def test_empty_vector(self):
        g = GradientEstimator().gradient(sphere, np.zeros(0))
        assert g.shape == (0,)

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            GradientEstimator("backward")
        with pytest.raises(ValueError):
            default_step("backward")


class TestGradientFailures:

    def test_raising_objective(self):
        def f(x):
            if x[0] > 1.0:
                raise ZeroDivisionError("bad point")
            return sphere(x)

        with pytest.raises(GradientEvaluationError, match="ZeroDivisionError"):
            GradientEstimator("central").gradient(f, [1.0])

    def test_non_finite_value(self):
        def f(x):
            return np.nan if x[0] < 0 else sphere(x)

        with pytest.raises(GradientEvaluationError, match="non-finite"):
            GradientEstimator("central").gradient(f, [0.0])

    def test_parallel_failure_propagates(self):
        def f(x):
            raise RuntimeError("worker failure")

        with ThreadPoolExecutor(2) as pool:
            est = GradientEstimator(workers=Workers(pool))
            with pytest.raises(GradientEvaluationError, match="worker failure"):
                est.gradient(f, [1.0, 2.0])


class TestParallelGradient:

    def test_matches_serial(self):
        x = np.array([0.3, -0.7, 1.1, 2.0])
        serial = GradientEstimator("central").gradient(cubic, x)
        with ThreadPoolExecutor(4) as pool:
            parallel = GradientEstimator("central", workers=Workers(pool, ncores=3)).gradient(cubic, x)
        np.testing.assert_array_equal(parallel, serial)

    def test_replicate_trials_are_flattened(self):
        x = np.array([1.0, 2.0])
        with ThreadPoolExecutor(4) as pool:
            workers = Workers(pool)
            obj = ReplicatedObjective(lambda p: sphere(p), np.asarray, replicates=3, workers=workers)
            g = GradientEstimator("central", workers=workers).gradient(obj, x)
        np.testing.assert_allclose(g, 2 * x, atol=1e-6)
        #2k points times r trials
        assert obj.n_trials == 2 * 2 * 3


class TestHessian:

    def test_sphere_hessian(self):
        H = GradientEstimator().hessian(sphere, [1.0, -1.0, 0.5])
        np.testing.assert_allclose(H, 2 * np.eye(3), atol=1e-4)

    def test_mixed_terms(self):
        def f(x):
            return x[0] ** 2 + 3 * x[0] * x[1] + 2 * x[1] ** 2

        H = GradientEstimator().hessian(f, [0.2, -0.4])
        np.testing.assert_allclose(H, [[2.0, 3.0], [3.0, 4.0]], atol=1e-4)
        assert np.array_equal(H, H.T)

    def test_empty(self):
        assert GradientEstimator().hessian(sphere, []).shape == (0, 0)
