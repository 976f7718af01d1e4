"""
System transforms.

Every transform takes a system and returns a new one; the input is never
modified and a failing transform leaves nothing behind.

- :func:`flatten` merges a tree of subsystems into one namespaced system
- :func:`convert_system` re-expresses a system over a new independent variable
- :func:`add_accumulations` adds integral-of-expression unknowns
- :func:`eliminate_constants` substitutes constants by their values
- :func:`linearize_shifts` lowers multi-step shifts to chains of one-step shifts
"""

import logging

import sympy as sp
from sympy.core.function import AppliedUndef

from dynsys.config import config
from dynsys.errors import DelayError, NamingCollisionError, TransformError
from dynsys.ir.equation import Equation
from dynsys.ir.expr import Differential, ShiftTerm, collect_vars, substitute, unwrap
from dynsys.ir.variable import as_time_dependent, getdefault, getname, is_global, rename, variable
from dynsys.system.classify import collect_constants
from dynsys.system.core import AbstractSystem, _subs_value, all_variables, namespace_variable, rebuild
from dynsys.system.discrete import DiscreteSystem
from dynsys.system.ode import ODESystem

logger = logging.getLogger(__name__)


# =============================================================================
# Flatten
# =============================================================================


def _content(sys: AbstractSystem, mapping: dict) -> dict:
    """Every field of ``sys`` that flattening concatenates, with ``mapping`` applied."""
    sub = lambda x: substitute(x, mapping)  # noqa: E731
    return {
        "equations": [e.subs(mapping) for e in sys.equations],
        "unknowns": [sub(v) for v in sys.unknowns],
        "parameters": [sub(p) for p in sys.parameters],
        "observed": [e.subs(mapping) for e in sys.observed],
        "controls": [sub(c) for c in sys.controls],
        "parameter_dependencies": [e.subs(mapping) for e in sys.parameter_dependencies],
        "initialization_equations": [e.subs(mapping) for e in sys.initialization_equations],
        "constraints": [e.subs(mapping) for e in sys.constraints],
        "continuous_events": [ev.subs(mapping) for ev in sys.continuous_events],
        "discrete_events": [ev.subs(mapping) for ev in sys.discrete_events],
        "defaults": {sub(k): _subs_value(v, mapping) for k, v in sys.defaults.items()},
        "guesses": {sub(k): _subs_value(v, mapping) for k, v in sys.guesses.items()},
        "assertions": {sub(k): msg for k, msg in sys.assertions.items()},
        "tstops": [_subs_value(s, mapping) for s in sys.tstops],
    }


def namespace_mapping(sys: AbstractSystem, prefix: str, iv=None) -> dict:
    """Renaming of every local variable of ``sys`` into the namespace ``prefix``."""
    mapping = {v: namespace_variable(v, prefix) for v in all_variables(sys) if not is_global(v)}
    if iv is not None and sys.iv is not None and sys.iv != iv:
        mapping[sys.iv] = iv
    # arguments of calls such as x(tau) or x(t - tau) are renamed too
    for var, new in mapping.items():
        if isinstance(new, AppliedUndef):
            mapping[var] = new.func(*(substitute(a, mapping) for a in new.args))
    return mapping


def flatten(sys: AbstractSystem) -> AbstractSystem:
    """
    Merge ``sys`` and its subsystems into one childless system.

    A childless system is returned unchanged. Otherwise the parent's content is
    followed by each child's flattened content, renamed into the child's
    namespace (``child.x``), in declaration order. The result is memoized on
    ``sys``.
    """
    if not sys.systems:
        return sys
    return sys.cache.flattened.get(lambda: _flatten(sys))


def _flatten(sys: AbstractSystem) -> AbstractSystem:
    merged = _content(sys, {})
    is_dde = sys.is_dde
    for child in sys.systems:
        flat_child = flatten(child)
        is_dde = is_dde or flat_child.is_dde
        part = _content(flat_child, namespace_mapping(flat_child, child.name, sys.iv))
        for key, value in part.items():
            if isinstance(value, dict):
                merged[key].update(value)
            else:
                merged[key].extend(value)

    logger.debug(
        "flattened %s: %d subsystems, %d equations, %d unknowns",
        sys.name,
        len(sys.systems),
        len(merged["equations"]),
        len(merged["unknowns"]),
    )
    for key in ("unknowns", "parameters", "controls"):
        merged[key] = list(dict.fromkeys(merged[key]))
    return rebuild(sys, systems=(), is_dde=is_dde, **merged)


# =============================================================================
# Formalism conversion
# =============================================================================


def convert_system(sys: AbstractSystem, t, name=None) -> ODESystem:
    """
    Re-express ``sys`` as an :class:`ODESystem` over the independent variable ``t``.

    Works for continuous systems with a different independent variable, discrete
    systems and static systems (bare unknowns become functions of ``t``).

    Raises
    ------
    TransformError
        If ``sys`` has observed equations, or an unknown has more than one argument.
    """
    if sys.observed:
        raise TransformError("`convert_system` cannot handle reduced model (i.e. observed(sys) is non-empty)")
    sys = flatten(sys)
    mapping = {}
    unknowns = []
    for v in sys.unknowns:
        if isinstance(v, AppliedUndef) and len(v.args) != 1:
            raise TransformError(f"Variable {v} has more than one argument.")
        new = as_time_dependent(v, t)
        mapping[v] = new
        unknowns.append(new)
    if sys.iv is not None and sys.iv != t:
        mapping[sys.iv] = t

    return ODESystem.create(
        [e.subs(mapping) for e in sys.equations],
        t,
        unknowns,
        sys.parameters,
        name=name or sys.name,
        controls=sys.controls,
        defaults={substitute(k, mapping): _subs_value(v, mapping) for k, v in sys.defaults.items()},
        guesses={substitute(k, mapping): _subs_value(v, mapping) for k, v in sys.guesses.items()},
        parameter_dependencies=sys.parameter_dependencies,
        constraints=[e.subs(mapping) for e in sys.constraints],
        continuous_events=[ev.subs(mapping) for ev in sys.continuous_events],
        discrete_events=[ev.subs(mapping) for ev in sys.discrete_events],
        assertions={substitute(k, mapping): m for k, m in sys.assertions.items()},
        description=sys.description,
        metadata=sys.metadata,
        context=sys.context,
        checks=False,
    )


# =============================================================================
# Accumulations
# =============================================================================


def add_accumulations(sys: AbstractSystem, vars=None) -> AbstractSystem:
    """
    Add unknowns that integrate expressions: ``D(a) ~ expr`` with ``a(t0) = 0``.

    Parameters
    ----------
    sys : AbstractSystem
        Continuous system to augment.
    vars : sequence of (variable or name, expression) pairs, optional
        New variables and the expressions they accumulate. By default every
        unknown ``x`` gets an ``accumulation_x``.

    Raises
    ------
    NamingCollisionError
        If a new variable's name is already used by an unknown or parameter.
    """
    iv = sys.iv
    if iv is None or sys.operator is not sp.Derivative:
        raise TransformError("Accumulations can only be added to continuous-time systems")
    flat = flatten(sys)
    if vars is None:
        vars = [(f"{config.ACCUMULATION_PREFIX}{getname(u)}", u) for u in flat.unknowns]

    pairs = []
    for new, expr in vars:
        new_var = variable(new, iv) if isinstance(new, str) else new
        pairs.append((new_var, sp.sympify(expr)))

    existing = {getname(v) for v in flat.unknowns} | {getname(p) for p in flat.parameters}
    names = [getname(a) for a, _ in pairs]
    clashes = sorted({n for n in names if n in existing} | {n for n in names if names.count(n) > 1})
    if clashes:
        raise NamingCollisionError(f"{', '.join(clashes)} already exist in the system!")

    D = Differential(iv)
    logger.debug("adding %d accumulation variables to %s", len(pairs), sys.name)
    return rebuild(
        sys,
        equations=sys.equations + tuple(Equation(D(a), expr) for a, expr in pairs),
        unknowns=sys.unknowns + tuple(a for a, _ in pairs),
        defaults={**sys.defaults, **{a: 0.0 for a, _ in pairs}},
    )


# =============================================================================
# Constants
# =============================================================================


def get_constant_map(constants) -> dict:
    return {c: sp.sympify(getdefault(c)) for c in constants}


def eliminate_constants(sys: AbstractSystem) -> AbstractSystem:
    """
    Substitute every constant by its value in equations, observed equations,
    parameter dependencies and events.
    """
    event_eqs = tuple(e for ev in sys.continuous_events + sys.discrete_events for e in ev.equations)
    consts = collect_constants(sys.equations + sys.observed + sys.parameter_dependencies + event_eqs)
    if not consts:
        return sys
    cmap = get_constant_map(consts)
    logger.debug("eliminating %d constants from %s", len(cmap), sys.name)
    return rebuild(
        sys,
        equations=tuple(e.subs(cmap) for e in sys.equations),
        observed=tuple(e.subs(cmap) for e in sys.observed),
        parameter_dependencies=tuple(e.subs(cmap) for e in sys.parameter_dependencies),
        continuous_events=tuple(ev.subs(cmap) for ev in sys.continuous_events),
        discrete_events=tuple(ev.subs(cmap) for ev in sys.discrete_events),
        parameters=tuple(p for p in sys.parameters if p not in cmap),
        defaults={k: v for k, v in sys.defaults.items() if k not in cmap},
    )


# =============================================================================
# Shift linearization
# =============================================================================


def _shift_nodes(exprs) -> list:
    found = {}
    for expr in exprs:
        collect_vars(expr, ShiftTerm, found)
    return [n for n in found if isinstance(n, ShiftTerm)]


def shift_equation(eq: Equation, iv, delta: int, dt, time_dependent) -> Equation:
    """Move every time reference of ``eq`` by ``delta`` steps."""
    if delta == 0:
        return eq
    mapping = {}
    for side in eq:
        for v in collect_vars(side, ShiftTerm):
            if isinstance(v, ShiftTerm):
                mapping[v] = ShiftTerm(v.var, iv, v.steps + delta, v.dt)
            elif v in time_dependent:
                mapping[v] = ShiftTerm(v, iv, delta, dt)
    mapping[iv] = iv + delta * dt
    return eq.subs(mapping)


def lag_variable(var, j: int):
    """Unknown holding the value of ``var`` from ``j`` steps ago."""
    return rename(var, f"{getname(var)}{config.LAG_SUFFIX}{j}")


def linearize_shifts(sys: AbstractSystem) -> AbstractSystem:
    """
    Lower a discrete system to one-step form.

    Equations are normalized so that their left-hand side is ``Shift(t, 1)(x)``.
    A state read ``j > 1`` steps before the step being computed gets a chain of
    lag unknowns ``x_lag1 ... x_lag{j-1}`` updated by one-step shifts. A system
    that is already in one-step form is returned unchanged.

    Raises
    ------
    TransformError
        If ``sys`` is not discrete or its shifts use different sampling intervals.
    DelayError
        If a right-hand side reads a state ahead of the step being computed.
    """
    if not isinstance(sys, DiscreteSystem):
        raise TransformError("Shift linearization applies to discrete systems only")
    sys = flatten(sys)
    iv = sys.iv
    nodes = _shift_nodes(side for e in sys.equations for side in e)
    dts = {n.dt for n in nodes}
    if len(dts) > 1:
        raise TransformError(
            f"Shifts in {sys.name} use different sampling intervals {sorted(map(str, dts))}; "
            "mixed step sizes are not supported"
        )
    dt = next(iter(dts)) if dts else sp.Integer(1)
    time_dependent = {
        v for e in sys.equations for side in e for v in collect_vars(side, None) if isinstance(v, AppliedUndef) and v.has(iv)
    }

    states = set(sys.unknowns)
    normalized = []
    for e in sys.equations:
        if isinstance(e.lhs, ShiftTerm):
            steps = int(e.lhs.steps)
        elif e.lhs in states and _shift_nodes([e.rhs]):
            # x ~ f(Shift(t, -1)(x)) is the recurrence Shift(t, 1)(x) ~ f(x)
            steps = 0
        else:
            steps = 1
        if steps != 1:
            e = shift_equation(e, iv, 1 - steps, dt, time_dependent)
        normalized.append(e)
    changed = normalized != list(sys.equations)

    offsets = {}
    for e in normalized:
        for v in collect_vars(e.rhs, ShiftTerm):
            if isinstance(v, ShiftTerm):
                offsets.setdefault(unwrap(v), set()).add(int(v.steps))
            elif v in states:
                offsets.setdefault(v, set()).add(0)

    for v, steps in offsets.items():
        if max(steps) > 0:
            raise DelayError(f"{v} is read {max(steps)} step(s) ahead of the step being computed")

    lags = {v: -min(steps) for v, steps in offsets.items() if min(steps) < 0}
    if not lags:
        if not changed:
            return sys
        return rebuild(sys, equations=tuple(normalized))

    existing = {getname(u) for u in sys.unknowns} | {getname(p) for p in sys.parameters}
    mapping = {}
    lag_eqs = []
    lag_unknowns = []
    defaults = dict(sys.defaults)
    for v, depth in lags.items():
        chain = [lag_variable(v, j) for j in range(1, depth + 1)]
        for j, lagged in enumerate(chain, start=1):
            if getname(lagged) in existing:
                raise NamingCollisionError(f"{getname(lagged)} already exist in the system!")
            mapping[ShiftTerm(v, iv, -j, dt)] = lagged
            previous = v if j == 1 else chain[j - 2]
            lag_eqs.append(Equation(ShiftTerm(lagged, iv, 1, dt), previous))
            if v in sys.defaults:
                defaults.setdefault(lagged, sys.defaults[v])
        lag_unknowns.extend(chain)

    logger.debug("linearized shifts of %s: %d lag unknowns", sys.name, len(lag_unknowns))
    return rebuild(
        sys,
        equations=tuple(e.subs(mapping) for e in normalized) + tuple(lag_eqs),
        unknowns=sys.unknowns + tuple(lag_unknowns),
        defaults=defaults,
    )
