########################################################################################
##
##                                  TESTS FOR
##                            'solvers/scipy_global.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

from phasefit import calibrate
from phasefit.errors import UnsupportedConstraintError
from phasefit.opt.result import Convergence
from phasefit.solvers import SolverAdapter, get_solver, normalize_scipy
from phasefit.solvers import scipy_global


# HELPERS ==============================================================================

def sphere(x):
    return float(np.sum(np.square(x)))


GLOBAL_METHODS = ["differential-evolution", "dual-annealing"]


@pytest.fixture
def recorded(monkeypatch):
    """Replace both scipy entry points by recorders of their keyword arguments."""
    calls = {}

    def fake_with_rng(func, bounds, x0=None, rng=None, **kwargs):
        calls["kwargs"] = dict(kwargs, bounds=bounds, x0=x0, rng=rng)
        return OptimizeResult(x=np.asarray(x0), fun=func(x0), success=True, message="ok", nit=0)

    monkeypatch.setattr(scipy_global.sci_opt, "differential_evolution", fake_with_rng)
    monkeypatch.setattr(scipy_global.sci_opt, "dual_annealing", fake_with_rng)
    return calls


# ═══════════════════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════════════════

class TestRegistration:

    @pytest.mark.parametrize("name", GLOBAL_METHODS)
    def test_capabilities(self, name):
        s = get_solver(name)
        assert s.supports_bounds
        assert s.requires_bounds
        assert s.stochastic
        assert not s.supports_gradient


# ═══════════════════════════════════════════════════════════════════════════
# Argument translation
# ═══════════════════════════════════════════════════════════════════════════

class TestInvoke:

    @pytest.mark.parametrize("name", GLOBAL_METHODS)
    def test_maxit_becomes_maxiter(self, name, recorded):
        SolverAdapter().run(name, [1.0, -1.0], sphere, None, [-2.0, -2.0], [2.0, 2.0], {"maxit": 7})
        assert recorded["kwargs"]["maxiter"] == 7
        assert "maxit" not in recorded["kwargs"]

    @pytest.mark.parametrize("name", GLOBAL_METHODS)
    def test_box_and_start_point(self, name, recorded):
        SolverAdapter().run(name, [1.0, -1.0], sphere, None, [-2.0, -3.0], [2.0, 3.0])
        assert recorded["kwargs"]["bounds"] == [(-2.0, 2.0), (-3.0, 3.0)]
        np.testing.assert_array_equal(recorded["kwargs"]["x0"], [1.0, -1.0])

    def test_generator_passed_as_rng_when_accepted(self, recorded):
        rng = np.random.default_rng(0)
        SolverAdapter().run("differential-evolution", [1.0], sphere, None, [-1.0], [1.0], rng=rng)
        assert recorded["kwargs"]["rng"] is rng

    def test_generator_passed_as_seed_otherwise(self, monkeypatch):
        seen = {}

        def fake_with_seed(func, bounds, x0=None, seed=None, maxiter=1000):
            seen["seed"] = seed
            return OptimizeResult(x=np.asarray(x0), fun=func(x0), success=True, message="ok", nit=0)

        monkeypatch.setattr(scipy_global.sci_opt, "dual_annealing", fake_with_seed)
        rng = np.random.default_rng(0)
        SolverAdapter().run("dual-annealing", [1.0], sphere, None, [-1.0], [1.0], rng=rng)
        assert seen["seed"] is rng

    def test_no_generator_no_keyword(self):
        assert scipy_global._rng_kwarg(lambda f, rng=None: None, None) == {}


# ═══════════════════════════════════════════════════════════════════════════
# Real backend runs
# ═══════════════════════════════════════════════════════════════════════════

class TestBackendRuns:

    @pytest.mark.parametrize("name", GLOBAL_METHODS)
    def test_bounded_sphere(self, name):
        res = SolverAdapter().run(
            name,
            [1.5, -1.0],
            sphere,
            None,
            [-2.0, -2.0],
            [2.0, 2.0],
            {"maxit": 50},
            rng=np.random.default_rng(0),
        )
        assert res.success
        assert res.method == name
        assert res.value < 1e-4
        assert np.all(np.abs(res.par) <= 2.0)
        assert res.counts["function"] > 0

    @pytest.mark.parametrize("name", GLOBAL_METHODS)
    def test_same_seed_same_result(self, name):
        kwargs = dict(lower=[-2.0, -2.0], upper=[2.0, 2.0], options={"maxit": 20})
        a = SolverAdapter().run(name, [1.0, 1.0], sphere, rng=np.random.default_rng(1), **kwargs)
        b = SolverAdapter().run(name, [1.0, 1.0], sphere, rng=np.random.default_rng(1), **kwargs)
        np.testing.assert_array_equal(a.par, b.par)
        assert a.value == b.value

    def test_differential_evolution_iteration_cap(self):
        res = SolverAdapter().run(
            "differential-evolution",
            [1.0, 1.0, 1.0],
            sphere,
            None,
            [-5.0] * 3,
            [5.0] * 3,
            {"maxit": 1, "polish": False},
            rng=np.random.default_rng(3),
        )
        assert res.convergence is Convergence.MAX_ITERATIONS
        assert res.success

    def test_dual_annealing_iteration_message(self):
        native = OptimizeResult(
            x=np.zeros(2),
            fun=0.0,
            success=True,
            message=["Maximum number of iteration reached"],
            nit=10,
        )
        res = normalize_scipy(native)
        assert res.convergence is Convergence.MAX_ITERATIONS
        assert res.message == "Maximum number of iteration reached"

    def test_calibrate_phased_differential_evolution(self):
        res = calibrate(
            [1.0, 2.0, 3.0],
            sphere,
            phases=[1, 2, -1],
            method="differential-evolution",
            lower=-4,
            upper=4,
            rng=5,
            control={"maxit": 50},
        )
        assert res.success
        assert res.x[2] == 3.0
        np.testing.assert_allclose(res.x[:2], 0.0, atol=1e-2)
        assert all(h.method == "differential-evolution" for h in res.history)

    def test_calibrate_without_bounds_rejected(self):
        with pytest.raises(UnsupportedConstraintError, match="requires finite lower and upper bounds"):
            calibrate([1.0, 2.0], sphere, method="dual-annealing")
