########################################################################################
##
##                                  TESTS FOR
##                               'opt/control.py'
##
########################################################################################

# IMPORTS ==============================================================================

import pytest

from phasefit.opt.control import Control


# TESTS ================================================================================

class TestControl:

    def test_defaults(self):
        c = Control()
        assert c["maxit"] is None
        assert c["gr.method"] == "central"
        assert c["on.failure"] == "continue"
        assert c["bounds.policy"] == "reject"
        assert c["parallel"] is False

    def test_unknown_keys_pass_through(self):
        c = Control({"maxit": 50, "ftol": 1e-10, "ncores": 2})
        assert c.solver_options() == {"maxit": 50, "ftol": 1e-10}

    def test_maxit_omitted_when_unset(self):
        assert Control().solver_options() == {}

    @pytest.mark.parametrize(
        "options",
        [
            {"maxit": 0},
            {"ncores": 0},
            {"gr.method": "complex-step"},
            {"gr.step": -1.0},
            {"on.failure": "ignore"},
            {"bounds.policy": "penalty"},
        ],
    )
    def test_invalid_values(self, options):
        with pytest.raises(ValueError):
            Control(options)

    def test_read_only(self):
        c = Control()
        with pytest.raises(TypeError):
            c["maxit"] = 3

    def test_replace(self):
        c = Control({"maxit": 10})
        d = c.replace(**{"on.failure": "abort"})
        assert d["on.failure"] == "abort"
        assert d["maxit"] == 10
        assert c["on.failure"] == "continue"
