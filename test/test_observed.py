"""Tests for observed-value functions."""

import numpy as np
import pytest
import sympy as sp
from numpy.testing import assert_allclose

from dynsys import (
    Equation,
    ObservedFunctionCache,
    ODESystem,
    ResolutionError,
    build_explicit_observed_function,
    parameter,
    structural_simplify,
    temp_config,
    variable,
)


@pytest.fixture
def simp(decay_with_output):
    return structural_simplify(decay_with_output)


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


def test_observed_symbol(simp, decay_with_output):
    y = decay_with_output.unknowns[1]
    f = build_explicit_observed_function(simp, y)
    assert f([1.5], [2.0], 0.0) == pytest.approx(3.0)


def test_target_by_name(simp):
    f = build_explicit_observed_function(simp, "y")
    assert f([1.5], [2.0], 0.0) == pytest.approx(3.0)


def test_target_by_namespaced_name(simp):
    f = build_explicit_observed_function(simp, "s.y")
    assert f([0.5], [2.0], 0.0) == pytest.approx(1.0)


def test_new_expression(simp, decay_with_output):
    x, y = decay_with_output.unknowns
    a = simp.parameters[0]
    f = build_explicit_observed_function(simp, a * y + x)
    assert f([1.0], [3.0], 0.0) == pytest.approx(7.0)


def test_time_in_target(simp, t):
    f = build_explicit_observed_function(simp, ["y", t])
    assert_allclose(f([1.0], [2.0], 4.0), [2.0, 4.0])


def test_vector_targets(simp, decay_with_output):
    x, y = decay_with_output.unknowns
    f = build_explicit_observed_function(simp, [x, y])
    assert_allclose(f([2.0], [2.0], 0.0), [2.0, 4.0])


def test_return_inplace(simp):
    oop, iip = build_explicit_observed_function(simp, ["x", "y"], return_inplace=True)
    out = np.zeros(2)
    iip(out, [2.0], [2.0], 0.0)
    assert_allclose(out, [2.0, 4.0])
    assert_allclose(oop([2.0], [2.0], 0.0), out)


def test_output_type(simp):
    f = build_explicit_observed_function(simp, ["x", "y"], output_type=tuple)
    r = f([1.0], [2.0], 0.0)
    assert isinstance(r, tuple)
    assert r == pytest.approx((1.0, 2.0))


def test_expression_returns_source(simp):
    src = build_explicit_observed_function(simp, "y", expression=True)
    assert isinstance(src, str)
    assert src.startswith("def s_observed(u, p, t):")


def test_custom_name(simp):
    src = build_explicit_observed_function(simp, "y", expression=True, name="output")
    assert src.startswith("def output(")


def test_inputs(t, D):
    x = variable("x", t)
    a = parameter("a")
    k = parameter("k", default=1.0)
    sys = structural_simplify(ODESystem.from_equations([Equation(D(x), -k * x + a)], t, name="in"))
    f = build_explicit_observed_function(sys, a * x, inputs=[a])
    assert f([2.0], [3.0], [1.0], 0.0) == pytest.approx(6.0)


# ---------------------------------------------------------------------------
# Unresolvable targets
# ---------------------------------------------------------------------------


def test_unknown_name(simp):
    with pytest.raises(ResolutionError, match="no variable named"):
        build_explicit_observed_function(simp, "nope")


def test_foreign_variable_raises(simp):
    z = parameter("z")
    with pytest.raises(ResolutionError, match="cannot be resolved"):
        build_explicit_observed_function(simp, z + 1)


def test_foreign_variable_warns(simp):
    z = parameter("z")
    with pytest.warns(UserWarning, match="NaN"):
        f = build_explicit_observed_function(simp, z + 1, throw=False)
    assert np.isnan(f([1.0], [2.0], 0.0))


def test_throw_default_from_config(simp):
    z = parameter("z")
    with temp_config(OBSERVED_THROW=False):
        with pytest.warns(UserWarning):
            build_explicit_observed_function(simp, z)


# ---------------------------------------------------------------------------
# Parameter-only functions
# ---------------------------------------------------------------------------


def test_param_only(simp):
    a = simp.parameters[0]
    f = build_explicit_observed_function(simp, 2 * a, param_only=True)
    assert f([2.0]) == pytest.approx(4.0)
    assert build_explicit_observed_function(simp, 2 * a, param_only=True, expression=True).startswith(
        "def s_observed(p):"
    )


def test_param_only_rejects_observed(simp):
    with pytest.raises(ResolutionError, match="parameters alone"):
        build_explicit_observed_function(simp, "y", param_only=True)


def test_param_only_split_uses_parameter_observed(t, D):
    x, z = variable("x", t, default=1.0), variable("z", t)
    a = parameter("a", default=3.0)
    u = parameter("u", default=0.0, time_varying=True)
    sys = ODESystem.from_equations([Equation(D(x), -a * x + u), Equation(z, 2 * a)], t, name="po")
    simp = structural_simplify(sys, split=True)
    assert [e.lhs for e in simp.observed] == [z]
    f = build_explicit_observed_function(simp, "z", param_only=True)
    assert f([3.0], [0.0]) == pytest.approx(6.0)


# ---------------------------------------------------------------------------
# ObservedFunctionCache
# ---------------------------------------------------------------------------


class TestObservedFunctionCache:
    def test_call(self, simp):
        obs = ObservedFunctionCache(simp)
        assert obs("y", [1.0], [2.0], 0.0) == pytest.approx(2.0)
        assert "y" in obs
        assert len(obs) == 1

    def test_memoized(self, simp):
        obs = ObservedFunctionCache(simp)
        assert obs.function("y") is obs.function("y")
        obs.function(["x", "y"])
        assert ("x", "y") not in obs
        assert ["x", "y"] in obs
        assert len(obs) == 2

    def test_symbolic_key(self, simp, decay_with_output):
        y = decay_with_output.unknowns[1]
        obs = ObservedFunctionCache(simp)
        obs(sp.Integer(2) * y, [1.0], [2.0], 0.0)
        assert 2 * y in obs
