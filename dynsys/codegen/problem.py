"""
Function bundles and problem construction.

A problem packages what an external solver consumes: the generated functions,
the initial state ``u0`` ordered like the unknowns, the parameter values ``p``
(one array, or one array per block when parameters are split) and the time
span.

Example:
    sys = structural_simplify(lotka_volterra)
    prob = ODEProblem.create(sys, {x: 1.0, y: 1.0}, (0.0, 10.0), {a: 1.5})
    du = prob.f(prob.u0, prob.p, 0.0)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import sympy as sp
from beartype import beartype

from dynsys.codegen.generator import GeneratedFunction, generate_function, generate_jacobian, index_cache
from dynsys.codegen.observed import ObservedFunctionCache
from dynsys.config import config
from dynsys.errors import ArgumentError
from dynsys.ir.expr import ShiftTerm, collect_vars, delay_amount, fixpoint_substitute, is_delay, unwrap
from dynsys.ir.types import Formalism
from dynsys.ir.variable import getname
from dynsys.system.core import AbstractSystem, expand_parameters, todict

logger = logging.getLogger(__name__)


# =============================================================================
# Value maps
# =============================================================================


def _expand_arrays(varmap: dict) -> dict:
    """Split values given for whole parameter arrays into per-element entries."""
    result = {}
    for k, v in varmap.items():
        if isinstance(k, sp.IndexedBase) and k.shape is not None and not isinstance(v, sp.Basic):
            values = np.asarray(v)
            for elem in expand_parameters([k]):
                result[elem] = values[tuple(int(i) for i in elem.indices)]
        result[k] = v
    return result


def _resolve_keys(varmap: dict, candidates, prefix: Optional[str] = None) -> dict:
    """Map keys given as names or namespaced symbols onto ``candidates``."""
    sep = config.NAMESPACE_SEPARATOR
    known = set(candidates)
    by_name = {}
    for c in candidates:
        by_name[getname(c)] = c
        if prefix:
            by_name[f"{prefix}{sep}{getname(c)}"] = c
    result = {}
    for k, v in varmap.items():
        if isinstance(k, str):
            key = by_name.get(k, k)
        else:
            key = sp.sympify(k)
            if key not in known and not isinstance(key, ShiftTerm):
                key = by_name.get(getname(key), key)
        result[key] = v
    return result


def _numeric(value):
    if isinstance(value, sp.Basic) and value.is_number:
        return float(value) if value.is_real else complex(value)
    return value


def _substitutable(merged: dict) -> dict:
    return {k: sp.sympify(v) for k, v in merged.items() if isinstance(v, (sp.Basic, int, float, complex))}


@beartype
def varmap_to_vars(varmap: Any, order: Any, defaults: Optional[dict] = None, *, prefix: Optional[str] = None) -> np.ndarray:
    """
    Values of ``order`` as a numpy array.

    ``varmap`` is merged over ``defaults``; keys may be variables, their names
    or ``prefix``-namespaced names. Symbolic values are substituted with the
    merged map until they reduce to numbers.

    Raises
    ------
    ArgumentError
        If a variable of ``order`` has no value, or its value does not reduce to a number.
    """
    order = tuple(order)
    merged = _resolve_keys(_expand_arrays(todict(defaults)), order, prefix)
    merged.update(_resolve_keys(_expand_arrays(todict(varmap)), order, prefix))

    missing = [v for v in order if merged.get(v) is None]
    if missing:
        raise ArgumentError(f"No value was given for {missing}; pass it in the value map or declare a default")

    subs = _substitutable(merged)
    values = []
    unresolved = []
    for v in order:
        value = merged[v]
        if isinstance(value, sp.Basic):
            try:
                value = _numeric(fixpoint_substitute(value, subs))
            except ValueError as e:
                raise ArgumentError(f"Cyclic value definition for {v}: {e}") from e
            if isinstance(value, sp.Basic):
                unresolved.append((v, value))
        values.append(value)
    if unresolved:
        raise ArgumentError(f"Values do not reduce to numbers: {unresolved}")
    if not values:
        return np.zeros(0)
    return np.array(values)


def _require_complete(sys: AbstractSystem, kind: str):
    if not sys.is_complete:
        raise ArgumentError(
            f"A completed system is required to build a {kind}. "
            "Call `complete` or `structural_simplify` on the system first."
        )


def _require_formalism(sys: AbstractSystem, formalism: Formalism, kind: str):
    if sys.formalism is not formalism:
        raise ArgumentError(f"A {kind} needs a {formalism.name.lower()} system, got {type(sys).__name__}")


def problem_values(sys: AbstractSystem, u0map=None, pmap=None, state_defaults: Optional[dict] = None):
    """
    Initial state and parameter values of ``sys``.

    Either map may refer to variables of the other one in symbolic values.
    Parameters come as one array, or one array per block when split.
    """
    cache = index_cache(sys)
    scalars = [p for block in cache.parameter_blocks for p in block]
    u0map = _resolve_keys(_expand_arrays(todict(u0map)), sys.unknowns, sys.name)
    pmap = _resolve_keys(_expand_arrays(todict(pmap)), scalars + list(sys.parameters), sys.name)
    base = dict(sys.defaults if state_defaults is None else state_defaults)

    u0 = varmap_to_vars(u0map, sys.unknowns, {**base, **pmap}, prefix=sys.name)
    p_context = {**sys.defaults, **u0map}
    blocks = tuple(varmap_to_vars(pmap, block, p_context, prefix=sys.name) for block in cache.parameter_blocks)
    return u0, (blocks if sys.split else blocks[0])


def _parameter_args(p) -> tuple:
    return p if isinstance(p, tuple) else (p,)


# =============================================================================
# Function bundles
# =============================================================================


@dataclass(frozen=True)
class SystemFunction:
    """Right-hand side of a system with its optional Jacobian and observed functions."""

    sys: AbstractSystem
    f: GeneratedFunction
    jac: Optional[GeneratedFunction] = None
    observed: Optional[ObservedFunctionCache] = None

    def __call__(self, *args):
        return self.f(*args)

    @property
    def iip(self) -> Optional[Callable]:
        return self.f.iip

    @classmethod
    def from_system(cls, sys: AbstractSystem, *, jac: bool = False, inplace: bool = True, cse=None, **kwargs):
        return cls(
            sys=sys,
            f=generate_function(sys, inplace=inplace, cse=cse, **kwargs),
            jac=generate_jacobian(sys, inplace=inplace, cse=cse) if jac else None,
            observed=ObservedFunctionCache(sys, cse=cse),
        )


class ODEFunction(SystemFunction):
    """``du = f(u, p, t)`` (``f(u, h, p, t)`` for delay systems)."""


class DiscreteFunction(SystemFunction):
    """``u_next = f(u, p, t)``."""


class NonlinearFunction(SystemFunction):
    """Residuals ``f(u, p)``; zero at a solution."""


# =============================================================================
# Problems
# =============================================================================


def constant_history(u0: np.ndarray) -> Callable:
    """History function returning ``u0`` for every time before the start."""

    def history(*args):
        return u0.copy()

    return history


def _tspan(sys: AbstractSystem, tspan, kind: str) -> tuple:
    tspan = tspan if tspan is not None else sys.tspan
    if tspan is None:
        raise ArgumentError(f"{kind} needs a time span; pass `tspan` or declare one on the system")
    return tuple(tspan)


@dataclass(frozen=True)
class ODEProblem:
    """Initial value problem of a continuous system."""

    f: ODEFunction
    u0: np.ndarray
    tspan: tuple
    p: Any
    sys: AbstractSystem
    h: Optional[Callable] = None  # state history of delay systems

    @classmethod
    def create(
        cls, sys: AbstractSystem, u0map=None, tspan=None, pmap=None, *, jac=False, inplace=True, history=None, cse=None
    ):
        """
        Build the problem from value maps merged over the system defaults.

        Delay systems get a constant history equal to ``u0`` unless ``history``
        is given.

        Raises
        ------
        ArgumentError
            If the system is not complete or not continuous, the time span is
            missing, or a value is missing.
        """
        _require_complete(sys, "ODEProblem")
        _require_formalism(sys, Formalism.CONTINUOUS, "ODEProblem")
        tspan = _tspan(sys, tspan, "ODEProblem")
        u0, p = problem_values(sys, u0map, pmap)
        if sys.is_dde and history is None:
            history = constant_history(u0)
        logger.debug("ODEProblem for %s: %d states", sys.name, len(u0))
        return cls(
            f=ODEFunction.from_system(sys, jac=jac, inplace=inplace, cse=cse),
            u0=u0,
            tspan=tspan,
            p=p,
            sys=sys,
            h=history,
        )

    @property
    def parameters(self) -> tuple:
        return _parameter_args(self.p)

    def rhs(self, u=None, t=None):
        """Right-hand side at ``u`` (default ``u0``) and ``t`` (default the initial time)."""
        u = self.u0 if u is None else u
        t = self.tspan[0] if t is None else t
        if self.sys.is_dde:
            return self.f(u, self.h, *self.parameters, t)
        return self.f(u, *self.parameters, t)


def _step_size(sys: AbstractSystem):
    for e in sys.equations:
        for node in collect_vars(e.lhs, ShiftTerm):
            if isinstance(node, ShiftTerm):
                return node.dt
    return sp.Integer(1)


def past_state_keys(sys: AbstractSystem, u0map: dict) -> dict:
    """Rewrite ``Shift(t, -j)(x)`` and ``x(t - j*dt)`` keys to the lag unknowns of ``x``."""
    names = {getname(u): u for u in sys.unknowns}
    dt = _step_size(sys)
    result = {}
    for k, v in u0map.items():
        steps = None
        if isinstance(k, ShiftTerm) and k.steps < 0:
            steps = -k.steps
        elif isinstance(k, sp.Basic) and is_delay(k, sys.iv):
            steps = sp.simplify(delay_amount(k, sys.iv) / dt)
        if steps is None:
            result[k] = v
            continue
        if not steps.is_Integer:
            raise ArgumentError(f"{k} is not a whole number of steps in the past")
        lag = names.get(f"{getname(unwrap(k))}{config.LAG_SUFFIX}{int(steps)}")
        if lag is None:
            raise ArgumentError(f"{sys.name} has no lag unknown for {k}")
        result[lag] = v
    return result


@dataclass(frozen=True)
class DiscreteProblem:
    """Initial value problem of a discrete system."""

    f: DiscreteFunction
    u0: np.ndarray
    tspan: tuple
    p: Any
    sys: AbstractSystem

    @classmethod
    def create(cls, sys: AbstractSystem, u0map=None, tspan=None, pmap=None, *, inplace=True, cse=None):
        """
        Build the problem. Past values of lagged unknowns are given with
        ``Shift(t, -j)(x)`` keys; lag unknowns without one start from the
        default of ``x``.
        """
        _require_complete(sys, "DiscreteProblem")
        _require_formalism(sys, Formalism.DISCRETE, "DiscreteProblem")
        tspan = _tspan(sys, tspan, "DiscreteProblem")
        u0, p = problem_values(sys, past_state_keys(sys, todict(u0map)), pmap)
        return cls(
            f=DiscreteFunction.from_system(sys, inplace=inplace, cse=cse),
            u0=u0,
            tspan=tspan,
            p=p,
            sys=sys,
        )

    @property
    def parameters(self) -> tuple:
        return _parameter_args(self.p)

    def step(self, u=None, t=None):
        """State after one step from ``u`` (default ``u0``) at ``t`` (default the initial time)."""
        u = self.u0 if u is None else u
        t = self.tspan[0] if t is None else t
        return self.f(u, *self.parameters, t)


@dataclass(frozen=True)
class NonlinearProblem:
    """Root-finding problem of a static system; ``u0`` is the initial guess."""

    f: NonlinearFunction
    u0: np.ndarray
    p: Any
    sys: AbstractSystem

    @classmethod
    def create(cls, sys: AbstractSystem, u0map=None, pmap=None, *, jac=False, inplace=True, cse=None):
        _require_complete(sys, "NonlinearProblem")
        _require_formalism(sys, Formalism.STATIC, "NonlinearProblem")
        u0, p = problem_values(sys, u0map, pmap, state_defaults={**sys.guesses, **sys.defaults})
        return cls(
            f=NonlinearFunction.from_system(sys, jac=jac, inplace=inplace, cse=cse),
            u0=u0,
            p=p,
            sys=sys,
        )

    @property
    def parameters(self) -> tuple:
        return _parameter_args(self.p)

    def residual(self, u=None):
        u = self.u0 if u is None else u
        return self.f(u, *self.parameters)
