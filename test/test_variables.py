"""Tests for variable declaration, metadata and expression helpers (dynsys.ir)."""

import pytest
import sympy as sp
from sympy.core.function import AppliedUndef

from dynsys import (
    ArgumentError,
    Equation,
    Shift,
    ShiftTerm,
    VariableKind,
    collect_vars,
    constant,
    delayed,
    eq,
    get_metadata,
    getdefault,
    getguess,
    getname,
    is_constant,
    is_delay,
    is_parameter,
    parameter,
    parameter_array,
    parameters,
    variable,
    variables,
)
from dynsys.ir.equation import as_equations
from dynsys.ir.expr import fixpoint_substitute, unwrap
from dynsys.ir.variable import as_time_dependent, rename

# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


class TestDeclarations:
    def test_time_dependent_variable(self, t) -> None:
        x = variable("x", t, default=1.0, guess=0.5, description="position")
        assert isinstance(x, AppliedUndef)
        assert x.args == (t,)
        assert getname(x) == "x"
        assert getdefault(x) == 1.0
        assert getguess(x) == 0.5
        assert get_metadata(x).kind is VariableKind.UNKNOWN
        assert get_metadata(x).description == "position"

    def test_static_unknown(self) -> None:
        x = variable("x")
        assert isinstance(x, sp.Symbol)
        assert not is_parameter(x)

    def test_variables_split_names(self, t) -> None:
        x, y, z = variables("x, y z", t)
        assert [getname(v) for v in (x, y, z)] == ["x", "y", "z"]

    def test_parameters(self) -> None:
        a, b = parameters("a b", default=2.0)
        assert is_parameter(a) and is_parameter(b)
        assert getdefault(b) == 2.0

    def test_plain_symbol_is_parameter(self) -> None:
        assert is_parameter(sp.Symbol("q"))

    def test_constant_requires_value(self) -> None:
        with pytest.raises(ArgumentError, match="must be assigned a value"):
            constant("g")

    def test_constant(self) -> None:
        g = constant("g", 9.81)
        assert is_constant(g)
        assert is_parameter(g)
        assert getdefault(g) == 9.81

    def test_parameter_array(self) -> None:
        k = parameter_array("k", 3, default=[1.0, 2.0, 3.0])
        assert isinstance(k, sp.IndexedBase)
        assert tuple(k.shape) == (3,)
        assert getname(k) == "k"
        assert getname(k[1]) == "k[1]"
        assert is_parameter(k[0])
        assert get_metadata(k[2]).shape == (3,)

    def test_metadata_not_part_of_identity(self, t) -> None:
        x1 = variable("x", t, default=1.0)
        x2 = variable("x", t, default=2.0)
        assert x1 == x2
        assert hash(x1) == hash(x2)

    def test_redeclaration_updates_metadata(self, t) -> None:
        variable("x", t, default=1.0)
        x = variable("x", t, default=3.0)
        assert getdefault(x) == 3.0

    def test_time_dependent_parameter(self, t) -> None:
        u = parameter("u", iv=t, default=0.0)
        assert isinstance(u, AppliedUndef)
        assert is_parameter(u)


# ---------------------------------------------------------------------------
# Renaming
# ---------------------------------------------------------------------------


class TestRename:
    def test_rename_keeps_metadata(self, t) -> None:
        x = variable("x", t, default=4.0)
        y = rename(x, "sub.x")
        assert getname(y) == "sub.x"
        assert getdefault(y) == 4.0
        assert y.args == (t,)

    def test_rename_through_operators(self, t, D) -> None:
        x = variable("x", t)
        renamed = rename(D(x), "sub.x")
        assert isinstance(renamed, sp.Derivative)
        assert getname(renamed) == "sub.x"

    def test_rename_array_element(self) -> None:
        k = parameter_array("k", 2)
        assert getname(rename(k[1], "m.k")) == "m.k[1]"

    def test_as_time_dependent(self, t) -> None:
        x = variable("x", default=1.0)
        xt = as_time_dependent(x, t)
        assert isinstance(xt, AppliedUndef)
        assert getname(xt) == "x"
        assert getdefault(xt) == 1.0


# ---------------------------------------------------------------------------
# Operators and expression walks
# ---------------------------------------------------------------------------


class TestOperators:
    def test_differential(self, t, D) -> None:
        x = variable("x", t)
        assert D(x) == sp.Derivative(x, t)

    def test_shift_merging(self, t) -> None:
        x = variable("x", t)
        k = Shift(t)
        assert k(k(x)) == ShiftTerm(x, t, 2, 1)
        assert Shift(t, 0)(x) == x
        assert unwrap(k(k(x))) == x

    def test_shift_str(self, t) -> None:
        x = variable("x", t)
        assert str(Shift(t, -1)(x)) == "Shift(t, -1)(x(t))"

    def test_collect_vars_operator_filter(self, t, D) -> None:
        x, y = variables("x y", t)
        a = parameter("a")
        expr = D(x) + a * y
        assert set(collect_vars(expr, sp.Derivative)) == {D(x), a, y}
        assert x in collect_vars(expr, None)
        assert D(x) not in collect_vars(expr, None)

    def test_delays(self, t) -> None:
        x = variable("x", t)
        tau = parameter("tau")
        xd = delayed(x, tau)
        assert xd == x.func(t - tau)
        assert is_delay(xd, t)
        assert not is_delay(x, t)

    def test_fixpoint_substitute(self) -> None:
        a, b, c = parameters("a b c")
        assert fixpoint_substitute(a, {a: 2 * b, b: c + 1}) == 2 * (c + 1)

    def test_fixpoint_substitute_cycle(self) -> None:
        a, b = parameters("a b")
        with pytest.raises(ValueError, match="did not converge"):
            fixpoint_substitute(a, {a: b + 1, b: a + 1})


class TestEquation:
    def test_structural_equality(self, t, D) -> None:
        x = variable("x", t)
        assert Equation(D(x), -x) == eq(D(x), -x)
        assert str(Equation(D(x), 1)) == "Derivative(x(t), t) ~ 1"

    def test_residual(self, t) -> None:
        x = variable("x", t)
        assert Equation(x, 3).residual == 3 - x

    def test_as_equations(self, t) -> None:
        x = variable("x", t)
        eqs = as_equations([(x, 1), sp.Eq(x, 2), Equation(x, 3)])
        assert [e.rhs for e in eqs] == [1, 2, 3]
