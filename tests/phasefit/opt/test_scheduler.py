########################################################################################
##
##                                  TESTS FOR
##                              'opt/scheduler.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from phasefit.errors import ShapeError
from phasefit.opt.codec import ParameterCodec
from phasefit.opt.control import Control
from phasefit.opt.mask import Mask
from phasefit.opt.result import Convergence
from phasefit.opt.scheduler import PhaseScheduler, default_method, per_phase


# HELPERS ==============================================================================

def sphere(x):
    return float(np.sum(np.square(x)))


def _scheduler(par, phases, methods=None, fn=sphere, gr=None, control=None, replicates=1):
    codec = ParameterCodec(par)
    n = codec.size
    phases = np.asarray(phases)
    seq = sorted({int(p) for p in phases if p > 0}) or [1]
    return PhaseScheduler(
        fn,
        codec,
        codec.flatten(par),
        np.full(n, -10.0),
        np.full(n, 10.0),
        phases,
        methods or ["L-BFGS-B"] * len(seq),
        [replicates] * len(seq),
        Control(control),
        gr=gr,
    )


# ═══════════════════════════════════════════════════════════════════════════
# per_phase
# ═══════════════════════════════════════════════════════════════════════════

class TestPerPhase:

    def test_scalar_repeated(self):
        assert per_phase("BFGS", [1, 2, 3], "method") == ["BFGS"] * 3
        assert per_phase(4, [1, 2], "replicates") == [4, 4]
        assert per_phase(None, [1, 2], "method") == [None, None]

    def test_tuple_is_one_chain_for_all_phases(self):
        chain = ("Nelder-Mead", "L-BFGS-B")
        assert per_phase(chain, [1, 2], "method") == [chain, chain]

    def test_list_one_per_phase(self):
        assert per_phase(["A", "B"], [1, 3], "method") == ["A", "B"]

    def test_list_length_mismatch(self):
        with pytest.raises(ShapeError, match="2 phase"):
            per_phase(["A", "B", "C"], [1, 2], "method")

    def test_tuple_one_per_phase_when_not_scalar(self):
        assert per_phase((1, 3), [1, 2], "replicates", scalar_types=()) == [1, 3]
        with pytest.raises(ShapeError, match="3 entries"):
            per_phase((1, 2, 3), [1, 2], "replicates", scalar_types=())

    def test_mapping_by_phase_number(self):
        assert per_phase({3: "A"}, [1, 3], "method") == [None, "A"]
        with pytest.raises(ShapeError):
            per_phase({4: "A"}, [1, 3], "method")

    def test_default_method(self):
        assert default_method(1) == "L-BFGS-B"
        assert default_method(5) == "AHR-ES"


# ═══════════════════════════════════════════════════════════════════════════
# PhaseScheduler
# ═══════════════════════════════════════════════════════════════════════════

class TestPhaseScheduler:

    def test_runs_phases_in_order(self):
        sched = _scheduler([1.0, 2.0, 3.0], [2, 1, 3])
        history = sched.run()
        assert [r.phase for r in history] == [1, 2, 3]
        np.testing.assert_array_equal(history[0].active, [False, True, False])
        np.testing.assert_array_equal(history[1].active, [True, True, False])

    def test_inactive_values_untouched(self):
        sched = _scheduler([1.0, 2.0, 3.0], [1, 2, -1])
        res = sched.run_phase(0)
        assert res.par[1] == 2.0
        assert res.par[2] == 3.0
        assert res.par[0] == pytest.approx(0.0, abs=1e-6)

    def test_each_phase_seeds_the_next(self):
        sched = _scheduler([1.0, 2.0], [1, 2])
        sched.run_phase(0)
        after_first = sched.current.copy()
        res = sched.run_phase(1)
        assert after_first[0] == pytest.approx(0.0, abs=1e-6)
        assert res.value <= sched.history[0].value

    def test_objective_for_expands_around_template(self):
        sched = _scheduler([1.0, 2.0, 3.0], [1, -1, 1])
        mask = Mask([True, False, True])
        obj = sched.objective_for(mask, np.array([1.0, 2.0, 3.0]), 1)
        assert obj([0.0, 0.0]) == 4.0

    def test_analytic_gradient_projected(self):
        calls = []

        def gr(par):
            calls.append(1)
            return 2 * np.asarray(par)

        sched = _scheduler([1.0, 2.0, 3.0], [1, -1, 1], gr=gr)
        mask = Mask([True, False, True])
        obj = sched.objective_for(mask, sched.current, 1)
        g = sched.gradient_for(mask, obj)([1.0, 3.0])
        np.testing.assert_array_equal(g, [2.0, 6.0])
        assert calls == [1]

    def test_wrong_gradient_length(self):
        sched = _scheduler([1.0, 2.0], [1, 1], gr=lambda par: [1.0])
        mask = Mask([True, True])
        grad = sched.gradient_for(mask, sched.objective_for(mask, sched.current, 1))
        with pytest.raises(ShapeError):
            grad([1.0, 2.0])

    def test_empty_phase_evaluates_once(self):
        calls = []

        def fn(x):
            calls.append(1)
            return sphere(x)

        sched = _scheduler([1.0, 2.0], [-1, -1], fn=fn)
        history = sched.run()
        assert len(history) == 1
        assert history[0].method == "none"
        assert history[0].convergence is Convergence.CONVERGED
        assert history[0].value == 5.0
        assert calls == [1]

    def test_empty_phase_counts_every_replicate(self):
        sched = _scheduler([1.0, 2.0], [-1, -1], replicates=3)
        history = sched.run()
        assert history[0].counts == {"function": 3, "gradient": 0}

    def test_empty_phase_objective_error_fails_phase(self):
        def fn(x):
            raise ValueError("model diverged")

        sched = _scheduler([1.0, 2.0], [-1, -1], fn=fn)
        with pytest.warns(RuntimeWarning, match="Phase 1 failed"):
            history = sched.run()
        assert history[0].convergence is Convergence.FAILED
        assert not history[0].success
        assert "model diverged" in history[0].message
        assert isinstance(history[0].error, ValueError)
        assert np.isnan(history[0].value)
        np.testing.assert_array_equal(history[0].par, [1.0, 2.0])

    def test_empty_phase_objective_error_aborts(self):
        def fn(x):
            raise ValueError("model diverged")

        sched = _scheduler([1.0, 2.0], [-1, -1], fn=fn, control={"on.failure": "abort"})
        history = sched.run()
        assert len(history) == 1
        assert history[0].convergence is Convergence.FAILED

    def test_verbose_prints_one_line_per_phase(self, capsys):
        sched = _scheduler([1.0, 2.0], [1, 2], control={"verbose": 1})
        sched.run()
        out = capsys.readouterr().out
        assert out.count("[phase") == 2
