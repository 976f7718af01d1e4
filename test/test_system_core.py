"""Tests for system construction, identity, namespacing and completion."""

import threading

import pytest
import sympy as sp

from dynsys import (
    ArgumentError,
    CheckFlags,
    ConstructionContext,
    ContinuousEvent,
    DelayError,
    DiscreteSystem,
    Equation,
    IndependentVariableError,
    MemoCell,
    NonlinearSystem,
    ODESystem,
    ResolutionError,
    Shift,
    SystemTag,
    TagCounter,
    VariableKind,
    complete,
    delayed,
    getname,
    parameter,
    parameters,
    rebuild,
    variable,
    variables,
)
from dynsys.codegen.generator import calculate_jacobian


def three_state(t, D, **kwargs):
    x, y, z = variables("x y z", t, default=0.0)
    sigma, rho, beta = parameters("sigma rho beta", default=1.0)
    eqs = [
        Equation(D(x), sigma * (y - x)),
        Equation(D(y), x * (rho - z) - y),
        Equation(D(z), x * y - beta * z),
    ]
    return ODESystem.from_equations(eqs, t, name="lorenz", **kwargs)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_from_equations(self, lotka_volterra):
        sys = lotka_volterra
        assert sys.name == "lv"
        assert [getname(u) for u in sys.unknowns] == ["x", "y"]
        assert {getname(p) for p in sys.parameters} == {"a", "b", "c", "d"}
        assert all(sys.kind_of(u) is VariableKind.UNKNOWN for u in sys.unknowns)
        assert all(sys.kind_of(p) is VariableKind.PARAMETER for p in sys.parameters)

    def test_defaults_collected_from_metadata(self, lotka_volterra):
        assert all(lotka_volterra.defaults[u] == 1.0 for u in lotka_volterra.unknowns)
        assert all(lotka_volterra.defaults[p] == 1.0 for p in lotka_volterra.parameters)

    def test_explicit_defaults_take_precedence(self, t, D):
        x = variable("x", t, default=1.0)
        sys = ODESystem.from_equations([Equation(D(x), -x)], t, name="d", defaults={x: 5.0})
        assert sys.defaults[x] == 5.0

    def test_name_required(self, t, D):
        x = variable("x", t)
        with pytest.raises(ArgumentError, match="name"):
            ODESystem.from_equations([Equation(D(x), -x)], t)

    def test_unknown_parameter_overlap(self, t, D):
        x = variable("x", t)
        a = parameter("a")
        with pytest.raises(ArgumentError):
            ODESystem.create([Equation(D(x), a)], t, [x, a], [a], name="bad")

    def test_iv_not_allowed_as_unknown(self, t, D):
        x = variable("x", t)
        with pytest.raises(ArgumentError):
            ODESystem.create([Equation(D(x), 1)], t, [x, t], [], name="bad")

    def test_unknown_must_depend_on_iv(self, t, D):
        x = variable("x", t)
        y = variable("y")
        with pytest.raises(ArgumentError, match="not a function of the independent variable"):
            ODESystem.create([Equation(D(x), 1)], t, [x, y], [], name="bad")

    def test_control_must_be_parameter(self, t, D):
        x = variable("x", t)
        a = parameter("a")
        with pytest.raises(ArgumentError, match="Controls"):
            ODESystem.create([Equation(D(x), a)], t, [x], [a], name="bad", controls=[x])

    def test_controls_are_tagged(self, t, D):
        x = variable("x", t)
        u = parameter("u")
        sys = ODESystem.create([Equation(D(x), u)], t, [x], [u], name="ctrl", controls=[u])
        assert sys.kind_of(u) is VariableKind.CONTROL

    def test_forward_delay_rejected(self, t, D):
        x = variable("x", t)
        with pytest.raises(DelayError, match="future"):
            ODESystem.from_equations([Equation(D(x), delayed(x, -1))], t, name="bad")

    def test_unbounded_delay_rejected(self, t, D):
        x = variable("x", t)
        with pytest.raises(DelayError):
            ODESystem.from_equations([Equation(D(x), x.func(t / 2))], t, name="bad")

    def test_delay_system(self, t, D):
        x = variable("x", t, default=1.0)
        tau = parameter("tau", default=1.0)
        sys = ODESystem.from_equations([Equation(D(x), -delayed(x, tau))], t, name="dde")
        assert sys.is_dde
        assert sys.unknowns == (x,)
        assert tau in sys.parameters

    def test_undeclared_iv_warns(self, D):
        s = sp.Symbol("s")
        x = variable("x", s)
        with pytest.warns(UserWarning, match="independent_variable"):
            ODESystem.from_equations([Equation(sp.Derivative(x, s), -x)], s, name="w")

    def test_wrong_iv_in_equations(self, t):
        s = parameter("s")
        x = variable("x", t)
        with pytest.raises(IndependentVariableError):
            ODESystem.create([Equation(sp.Derivative(x, s), 1)], t, [x], [s], name="bad")

    def test_checks_can_be_disabled(self, t, D):
        x = variable("x", t)
        y = variable("y")
        sys = ODESystem.create([Equation(D(x), 1)], t, [x, y], [], name="unchecked", checks=CheckFlags.NONE)
        assert y in sys.unknowns

    def test_deprecated_default_aliases(self, t, D):
        x = variable("x", t)
        with pytest.warns(DeprecationWarning):
            sys = ODESystem.from_equations([Equation(D(x), -x)], t, name="old", default_u0={x: 3.0})
        assert sys.defaults[x] == 3.0

    def test_parameter_dependencies(self, t, D):
        x = variable("x", t)
        a = parameter("a", default=2.0)
        b = parameter("b")
        sys = ODESystem.from_equations(
            [Equation(D(x), -b * x)], t, name="pd", parameter_dependencies=[Equation(b, 2 * a)]
        )
        assert sys.parameters == (a,)
        assert sys.dependent_parameters == (b,)
        assert sys.defaults[b] == 2 * a

    def test_cyclic_parameter_dependencies(self, t, D):
        x = variable("x", t)
        a, b = parameters("a b")
        with pytest.raises(ArgumentError, match="Circular"):
            ODESystem.from_equations(
                [Equation(D(x), -a * b * x)],
                t,
                name="cyc",
                parameter_dependencies=[Equation(a, b + 1), Equation(b, a + 1)],
            )

    def test_events_classified(self, t, D):
        x, v = variables("x v", t)
        e = parameter("e", default=0.9)
        event = ContinuousEvent((Equation(x, 0),), (Equation(v, -e * v),))
        sys = ODESystem.from_equations(
            [Equation(D(x), v), Equation(D(v), -9.81)], t, name="ball", continuous_events=[event]
        )
        assert e in sys.parameters
        assert sys.continuous_events == (event,)

    def test_discrete_rejects_derivatives(self, t, D):
        x = variable("x", t)
        with pytest.raises(ArgumentError, match="Shift"):
            DiscreteSystem.from_equations([Equation(D(x), x)], t, name="bad")

    def test_discrete_infers_iv(self, t):
        x = variable("x", t)
        sys = DiscreteSystem.from_equations([Equation(Shift(t)(x), x / 2)], name="half")
        assert sys.iv == t

    def test_nonlinear_system(self):
        x, y = variables("x y", guess=1.0)
        a = parameter("a", default=4.0)
        sys = NonlinearSystem.from_equations([Equation(0, x**2 - a), Equation(0, y - x)], name="nl")
        assert sys.iv is None
        assert set(sys.unknowns) == {x, y}
        assert sys.guesses == {x: 1.0, y: 1.0}

    def test_nonlinear_rejects_operators(self, t, D):
        x = variable("x", t)
        with pytest.raises(ArgumentError):
            NonlinearSystem.create([Equation(D(x), 1)], [x], [], name="bad")


class TestConstraints:
    @staticmethod
    def oscillator(t, D, constraints, **kwargs):
        x, v = variables("x v", t, default=0.0)
        eqs = [Equation(D(x), v), Equation(D(v), -x)]
        return ODESystem.from_equations(eqs, t, name="bvp", constraints=constraints(x, v), **kwargs)

    def test_point_constraints(self, t, D):
        sys = self.oscillator(t, D, lambda x, v: [Equation(x.func(0.5), 1), Equation(v.func(2), 0)])
        x, v = sys.unknowns
        assert sys.constraints == (Equation(x.func(0.5), 1), Equation(v.func(2), 0))
        assert len(sys.parameters) == 0
        assert "constraints (2):" in str(sys)

    def test_parameter_evaluation_point(self, t, D):
        tau = parameter("tau", default=1.0)
        k = parameter("k", default=3.0)
        sys = self.oscillator(t, D, lambda x, v: [Equation(x.func(tau), k)])
        assert set(sys.parameters) == {tau, k}
        assert sys.defaults[tau] == 1.0

    def test_whole_interval_warns(self, t, D):
        with pytest.warns(UserWarning, match="whole interval"):
            sys = self.oscillator(t, D, lambda x, v: [Equation(x, v)])
        assert len(sys.constraints) == 1

    def test_foreign_variable(self, t, D):
        y = variable("y", t)
        with pytest.raises(ArgumentError, match="not an unknown of the system"):
            self.oscillator(t, D, lambda x, v: [Equation(y.func(1.0), 0)])

    def test_too_many_arguments(self, t, D):
        with pytest.raises(ArgumentError, match="Too many arguments"):
            self.oscillator(t, D, lambda x, v: [Equation(x.func(1.0, 2.0), 0)])

    def test_invalid_evaluation_point(self, t, D):
        tau = parameter("tau")
        with pytest.raises(ArgumentError, match="Invalid argument"):
            self.oscillator(t, D, lambda x, v: [Equation(x.func(t - tau), 0)])
        with pytest.raises(ArgumentError, match="Invalid argument"):
            self.oscillator(t, D, lambda x, v: [Equation(x.func(v), 0)])

    def test_static_system_rejects_constraints(self):
        x = variable("x")
        with pytest.raises(ArgumentError, match="independent variable"):
            NonlinearSystem.from_equations([Equation(0, x - 1)], name="nl", constraints=[Equation(x, 1)])

    def test_equality_includes_constraints(self, t, D):
        s1 = self.oscillator(t, D, lambda x, v: [Equation(x.func(0), 1)])
        s2 = self.oscillator(t, D, lambda x, v: [Equation(x.func(0), 1)])
        s3 = self.oscillator(t, D, lambda x, v: [Equation(x.func(1), 1)])
        assert s1 == s2
        assert s1 != s3


# ---------------------------------------------------------------------------
# Identity and equality
# ---------------------------------------------------------------------------


class TestIdentity:
    def test_same_content_different_tags(self, t, D):
        s1 = three_state(t, D)
        s2 = three_state(t, D)
        assert s1.tag != s2.tag
        assert s1 == s2
        assert len(s1.unknowns) == 3

    def test_equality_ignores_equation_order(self, t, D):
        s1 = three_state(t, D)
        s2 = rebuild(s1, equations=tuple(reversed(s1.equations)))
        assert s1 == s2

    def test_equality_ignores_caches(self, t, D):
        s1 = three_state(t, D)
        s2 = three_state(t, D)
        calculate_jacobian(s1)
        assert s1.cache.jacobian.is_computed
        assert not s2.cache.jacobian.is_computed
        assert s1 == s2

    def test_equality_sensitive_to_content(self, t, D):
        s1 = three_state(t, D)
        s2 = rebuild(s1, equations=s1.equations[:2])
        assert s1 != s2

    def test_equality_sensitive_to_type(self, t):
        x = variable("x", t)
        ode = ODESystem.create([], t, [x], [], name="a")
        disc = DiscreteSystem.create([], t, [x], [], name="a")
        assert ode != disc

    def test_injected_counter(self, t, D):
        context = ConstructionContext()
        s1 = three_state(t, D, context=context)
        s2 = three_state(t, D, context=context)
        assert s1.tag == SystemTag(context.counter.source, 1)
        assert s2.tag.serial == 2
        assert context.counter.value == 2

    def test_tag_counter(self):
        counter = TagCounter()
        tags = [counter.next() for _ in range(3)]
        assert [tag.serial for tag in tags] == [1, 2, 3]
        assert len({tag.source for tag in tags}) == 1

    def test_tag_counter_threads(self):
        counter = TagCounter()
        per_thread, n_threads = 200, 8
        seen = [[] for _ in range(n_threads)]

        def draw(bucket):
            for _ in range(per_thread):
                bucket.append(counter.next().serial)

        threads = [threading.Thread(target=draw, args=(bucket,)) for bucket in seen]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        serials = [s for bucket in seen for s in bucket]
        assert len(set(serials)) == per_thread * n_threads
        assert sorted(serials) == list(range(1, per_thread * n_threads + 1))
        assert counter.value == per_thread * n_threads

    def test_concurrent_construction_tags(self, t, D):
        context = ConstructionContext()
        built = []

        def construct():
            for _ in range(5):
                built.append(three_state(t, D, context=context))

        threads = [threading.Thread(target=construct) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len({s.tag for s in built}) == 20
        assert context.counter.value == 20

    def test_memo_cell_computes_once(self):
        cell = MemoCell()
        calls = []
        assert cell.peek("empty") == "empty"
        assert cell.get(lambda: calls.append(1) or 42) == 42
        assert cell.get(lambda: calls.append(1) or 0) == 42
        assert calls == [1]


# ---------------------------------------------------------------------------
# Composition and namespacing
# ---------------------------------------------------------------------------


def decay(t, D, name):
    x = variable("x", t, default=1.0)
    k = parameter("k", default=2.0)
    return ODESystem.from_equations([Equation(D(x), -k * x)], t, name=name)


class TestNamespacing:
    def test_duplicate_sibling_names(self, t, D):
        c1 = decay(t, D, "child")
        c2 = decay(t, D, "child")
        with pytest.raises(ArgumentError, match="System names must be unique"):
            ODESystem.create([], t, [], [], name="parent", systems=[c1, c2])

    def test_member_access_is_namespaced(self, lotka_volterra):
        assert getname(lotka_volterra.x) == "lv.x"
        assert getname(lotka_volterra.a) == "lv.a"

    def test_member_access_after_complete(self, lotka_volterra):
        done = complete(lotka_volterra)
        assert getname(done.x) == "x"
        assert done.x in done.unknowns

    def test_child_access(self, t, D):
        parent = ODESystem.create([], t, [], [], name="top", systems=[decay(t, D, "a1")])
        child = parent.a1
        assert child.name == "top.a1"
        assert getname(parent.a1.x) == "top.a1.x"

    def test_missing_member(self, lotka_volterra):
        with pytest.raises(ResolutionError):
            lotka_volterra.var("nope")
        with pytest.raises(AttributeError):
            lotka_volterra.nope

    def test_custom_separator(self, lotka_volterra):
        from dynsys import temp_config

        with temp_config(NAMESPACE_SEPARATOR="_"):
            assert getname(lotka_volterra.x) == "lv_x"


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class TestComplete:
    def test_complete_keeps_content(self, lotka_volterra):
        done = complete(lotka_volterra)
        assert done.is_complete
        assert done == lotka_volterra
        assert done.index_cache is not None
        assert complete(done) is done

    def test_index_cache(self, lotka_volterra):
        cache = complete(lotka_volterra).index_cache
        assert list(cache.unknown_index.values()) == [0, 1]
        assert cache.block_names == ("p",)
        assert len(cache.parameter_blocks[0]) == 4

    def test_split_blocks(self, t, D):
        x = variable("x", t)
        a = parameter("a", default=1.0)
        u = parameter("u", default=0.0, time_varying=True)
        sys = complete(ODESystem.from_equations([Equation(D(x), a * x + u)], t, name="sp"), split=True)
        cache = sys.index_cache
        assert cache.block_names == ("tunable", "discrete")
        assert cache.parameter_blocks == ((a,), (u,))
        assert cache.block_of(u) == 1

    def test_repr_and_str(self, lotka_volterra):
        assert "ODESystem(name='lv'" in repr(lotka_volterra)
        text = str(lotka_volterra)
        assert "unknowns (2)" in text
        assert "independent variable: t" in text
