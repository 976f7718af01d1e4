"""
Function generation.

Lowers right-hand sides, residuals, Jacobians and arbitrary expressions of a
system into numerical functions with the calling convention

    f(u, [inputs], p..., [t])            continuous and discrete systems
    f(u, h, p..., t)                     delay systems (h is the state history)
    f(u, p...)                           static systems

where ``u`` is the state vector ordered like ``sys.unknowns`` and ``p...`` are
the parameter blocks of the system's index cache. Every function comes as an
out-of-place variant and, for vector outputs, an in-place variant
``f_inplace(out, ...)``.
"""

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional

import sympy as sp
from beartype import beartype
from sympy.core.function import AppliedUndef

from dynsys.codegen.ir import (
    Argument,
    FunctionIR,
    HistoryTerm,
    history_argument,
    lower,
    parameter_argument,
    scalar_argument,
    vector_argument,
)
from dynsys.codegen.renderers import compile_function, render_source
from dynsys.config import config
from dynsys.errors import InvalidSystemError, ResolutionError
from dynsys.ir.expr import ShiftTerm, collect_vars, fixpoint_substitute, is_delay, unwrap
from dynsys.ir.types import Formalism
from dynsys.ir.variable import getdefault
from dynsys.system.classify import collect_constants
from dynsys.system.core import AbstractSystem, build_index_cache
from dynsys.system.transforms import flatten
from dynsys.system.validation import check_lhs, check_operator_variables

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedFunction:
    """
    Out-of-place and in-place callables rendered from one :class:`FunctionIR`.

    Calling the object calls the out-of-place function.
    """

    ir: FunctionIR
    oop: Callable
    source: str
    iip: Optional[Callable] = None
    iip_source: Optional[str] = None

    def __call__(self, *args):
        return self.oop(*args)

    @property
    def name(self) -> str:
        return self.ir.name

    def to_casadi(self):
        from dynsys.codegen.casadi import render_casadi

        return render_casadi(self.ir)


def identifier(name: str) -> str:
    """``name`` made usable as a Python identifier."""
    name = re.sub(r"\W", "_", name)
    return name if name and not name[0].isdigit() else f"_{name}"


def _outputs_list(outputs):
    if isinstance(outputs, sp.MatrixBase):
        return list(outputs)
    if isinstance(outputs, (list, tuple)):
        return list(outputs)
    return [outputs]


def _rebuild_outputs(outputs, exprs):
    if isinstance(outputs, sp.MatrixBase):
        return sp.Matrix(outputs.rows, outputs.cols, exprs)
    if isinstance(outputs, (list, tuple)):
        return list(exprs)
    return exprs[0]


def substitute_observed(exprs, observed) -> list:
    """Replace observed quantities by their defining expressions, recursively."""
    if not observed:
        return [sp.sympify(e) for e in exprs]
    mapping = {e.lhs: e.rhs for e in observed}
    return [fixpoint_substitute(e, mapping) for e in exprs]


def insert_history(exprs, iv, states) -> list:
    """Replace delayed states ``x(t - tau)`` by history calls ``HistoryTerm(t - tau, index)``."""
    index = {u: i for i, u in enumerate(states)}
    result = []
    for expr in exprs:
        mapping = {}
        for v in collect_vars(expr, None):
            if is_delay(v, iv):
                current = v.func(iv)
                if current in index:
                    mapping[v] = HistoryTerm(v.args[0], index[current])
        result.append(sp.sympify(expr).xreplace(mapping) if mapping else sp.sympify(expr))
    return result


def _bound_symbols(arguments) -> set:
    bound = set()
    for arg in arguments:
        bound.update(arg.symbols)
    return bound


def unbound_variables(exprs, arguments) -> dict:
    """Variables read by ``exprs`` that no argument provides, in order of appearance."""
    bound = _bound_symbols(arguments)
    free = {}
    for expr in exprs:
        for v in collect_vars(expr, None):
            if v not in bound and not (isinstance(v, sp.Indexed) and v.base in bound):
                free[v] = None
    return free


def check_closure(exprs, arguments):
    """Raise :class:`ResolutionError` if an expression reads a variable no argument provides."""
    free = unbound_variables(exprs, arguments)
    if free:
        raise ResolutionError(
            f"Generated function reads {list(free)}, which are not provided by its arguments "
            f"({', '.join(a.name for a in arguments)})"
        )


@beartype
def build_function(
    outputs: Any,
    arguments: Sequence[Argument],
    *,
    name: str = "generated_function",
    observed: Sequence = (),
    substitutions: Optional[dict] = None,
    history: Optional[tuple] = None,
    inplace: bool = True,
    cse: Optional[bool] = None,
) -> GeneratedFunction:
    """
    Generate a numerical function from symbolic outputs.

    Parameters
    ----------
    outputs : expression, sequence of expressions or sympy Matrix
        What the function returns.
    arguments : sequence of Argument
        Argument groups in call order.
    observed : sequence of Equation
        Observed definitions substituted recursively before lowering.
    substitutions : dict, optional
        Further replacements (parameter dependencies, constants), applied to a fixed point.
    history : (iv, states), optional
        Replace delayed states by calls to the history argument.
    inplace : bool
        Also build ``name_inplace(out, ...)`` for vector and matrix outputs.
    cse : bool, optional
        Common subexpression elimination; defaults to ``config.CODEGEN_CSE``.

    Raises
    ------
    ResolutionError
        If an output reads a variable none of the arguments provides.
    """
    exprs = substitute_observed(_outputs_list(outputs), observed)
    if substitutions:
        exprs = [fixpoint_substitute(e, substitutions) for e in exprs]
    if history is not None:
        exprs = insert_history(exprs, *history)
    check_closure(exprs, arguments)

    name = identifier(name)
    ir = lower(name, _rebuild_outputs(outputs, exprs), arguments, cse=config.CODEGEN_CSE if cse is None else cse)
    source = render_source(ir)
    oop = compile_function(ir)
    iip = iip_source = None
    if inplace and not ir.is_scalar:
        iip_source = render_source(ir, inplace=True)
        iip = compile_function(ir, inplace=True)
    logger.debug("generated %s: %d outputs, %d cse assignments", name, len(ir.outputs), len(ir.assignments))
    return GeneratedFunction(ir=ir, oop=oop, source=source, iip=iip, iip_source=iip_source)


# =============================================================================
# System arguments
# =============================================================================


def index_cache(sys: AbstractSystem):
    return sys.index_cache if sys.index_cache is not None else build_index_cache(sys)


def system_arguments(sys: AbstractSystem, *, inputs=(), include_state: bool = True, history: bool = False) -> list:
    """
    Argument groups of a generated function for ``sys``.

    ``inputs`` are passed as their own vector after the state and removed from
    the parameter blocks.
    """
    cache = index_cache(sys)
    inputs = tuple(inputs)
    args = []
    if include_state:
        args.append(vector_argument("u", cache.unknown_index))
    if inputs:
        args.append(vector_argument("inputs", inputs))
    if history:
        args.append(history_argument("h"))
    input_set = set(inputs)
    for block_name, block in zip(cache.block_names, cache.parameter_blocks):
        args.append(parameter_argument(block_name, [p for p in block if p not in input_set]))
    if sys.iv is not None:
        args.append(scalar_argument("t", sys.iv))
    return args


def system_substitutions(sys: AbstractSystem) -> dict:
    """Dependent parameters by their definitions and constants by their values."""
    mapping = {d.lhs: d.rhs for d in sys.parameter_dependencies}
    eqs = sys.equations + sys.observed + sys.parameter_dependencies
    mapping.update({c: sp.sympify(getdefault(c)) for c in collect_constants(eqs)})
    return mapping


# =============================================================================
# Right-hand sides
# =============================================================================


def ode_rhs(sys: AbstractSystem) -> list:
    """Right-hand sides ``f`` of ``D(x) ~ f`` ordered like the unknowns."""
    check_operator_variables(sys.equations, sp.Derivative)
    check_lhs(sys.equations, sp.Derivative, sys.unknowns)
    by_state = {}
    for e in sys.equations:
        if e.lhs.derivative_count != 1:
            raise InvalidSystemError(f"`{e}` is a higher-order derivative; reduce the system to first order")
        by_state[unwrap(e.lhs)] = e.rhs
    missing = [u for u in sys.unknowns if u not in by_state]
    if missing:
        raise InvalidSystemError(f"Unknowns {missing} have no differential equation")
    return [by_state[u] for u in sys.unknowns]


def discrete_rhs(sys: AbstractSystem) -> list:
    """Next-state expressions of ``Shift(t, 1)(x) ~ f`` ordered like the unknowns."""
    check_operator_variables(sys.equations, ShiftTerm)
    check_lhs(sys.equations, ShiftTerm, sys.unknowns)
    by_state = {}
    for e in sys.equations:
        if e.lhs.steps != 1:
            raise InvalidSystemError(f"`{e}` is not a one-step update; run linearize_shifts first")
        by_state[unwrap(e.lhs)] = e.rhs
    missing = [u for u in sys.unknowns if u not in by_state]
    if missing:
        raise InvalidSystemError(f"Unknowns {missing} have no update equation")
    return [by_state[u] for u in sys.unknowns]


def residuals(sys: AbstractSystem) -> list:
    """``rhs - lhs`` of every equation."""
    return [e.residual for e in sys.equations]


def equations_rhs(sys: AbstractSystem) -> list:
    if sys.formalism is Formalism.CONTINUOUS:
        return ode_rhs(sys)
    if sys.formalism is Formalism.DISCRETE:
        return discrete_rhs(sys)
    return residuals(sys)


def _prepare(sys: AbstractSystem) -> AbstractSystem:
    return flatten(sys)


@beartype
def generate_function(
    sys: AbstractSystem,
    *,
    inputs: Sequence = (),
    name: Optional[str] = None,
    inplace: bool = True,
    cse: Optional[bool] = None,
) -> GeneratedFunction:
    """
    Right-hand side function of ``sys``.

    Continuous systems give ``du = f(u, p, t)``, discrete systems the next state
    ``u_next = f(u, p, t)`` and static systems the residuals ``f(u, p)``.

    Raises
    ------
    InvalidSystemError
        If the equations are not in explicit first-order form.
    """
    sys = _prepare(sys)
    rhs = equations_rhs(sys)
    return build_function(
        rhs,
        system_arguments(sys, inputs=inputs, history=sys.is_dde),
        name=name or f"{sys.name}_rhs",
        observed=sys.observed,
        substitutions=system_substitutions(sys),
        history=(sys.iv, sys.unknowns) if sys.is_dde else None,
        inplace=inplace,
        cse=cse,
    )


# =============================================================================
# Jacobians
# =============================================================================


def _explicit_rhs(sys: AbstractSystem) -> list:
    exprs = substitute_observed(equations_rhs(sys), sys.observed)
    mapping = system_substitutions(sys)
    return [fixpoint_substitute(e, mapping) for e in exprs] if mapping else exprs


def _differentiate(exprs, variables) -> sp.Matrix:
    """Jacobian of ``exprs`` with respect to ``variables``, treating every variable as independent."""
    dummies = {v: sp.Dummy(f"d{i}") for i, v in enumerate(variables)}
    back = {d: v for v, d in dummies.items()}
    rows = []
    for e in exprs:
        e = sp.sympify(e).xreplace(dummies)
        rows.append([sp.diff(e, dummies[v]).xreplace(back) for v in variables])
    return sp.Matrix(len(exprs), len(variables), [x for row in rows for x in row])


def _freeze_time_dependent(exprs, iv):
    """Replace time-dependent applications by dummies so that ``iv`` is the only explicit time."""
    mapping = {}
    for e in exprs:
        for v in collect_vars(e, None):
            if isinstance(v, AppliedUndef) and v.has(iv):
                mapping.setdefault(v, sp.Dummy(str(v.func)))
    return mapping


def calculate_jacobian(sys: AbstractSystem) -> sp.Matrix:
    """Symbolic Jacobian of the right-hand side with respect to the unknowns (memoized)."""
    return sys.cache.jacobian.get(lambda: _differentiate(_explicit_rhs(_prepare(sys)), _prepare(sys).unknowns))


def calculate_control_jacobian(sys: AbstractSystem) -> sp.Matrix:
    """Symbolic Jacobian of the right-hand side with respect to the controls (memoized)."""
    return sys.cache.ctrl_jacobian.get(lambda: _differentiate(_explicit_rhs(_prepare(sys)), _prepare(sys).controls))


def calculate_tgrad(sys: AbstractSystem) -> sp.Matrix:
    """Explicit time derivative of the right-hand side (memoized)."""

    def compute():
        flat = _prepare(sys)
        if flat.iv is None:
            raise InvalidSystemError(f"{flat.name} has no independent variable")
        exprs = _explicit_rhs(flat)
        frozen = _freeze_time_dependent(exprs, flat.iv)
        back = {d: v for v, d in frozen.items()}
        grads = [sp.diff(sp.sympify(e).xreplace(frozen), flat.iv).xreplace(back) for e in exprs]
        return sp.Matrix(len(grads), 1, grads)

    return sys.cache.tgrad.get(compute)


@beartype
def generate_jacobian(
    sys: AbstractSystem,
    *,
    name: Optional[str] = None,
    inplace: bool = True,
    cse: Optional[bool] = None,
) -> GeneratedFunction:
    """Function evaluating :func:`calculate_jacobian` with the right-hand side's calling convention."""
    flat = _prepare(sys)
    return build_function(
        calculate_jacobian(sys),
        system_arguments(flat, history=flat.is_dde),
        name=name or f"{flat.name}_jac",
        history=(flat.iv, flat.unknowns) if flat.is_dde else None,
        inplace=inplace,
        cse=cse,
    )


@beartype
def generate_tgrad(
    sys: AbstractSystem,
    *,
    name: Optional[str] = None,
    inplace: bool = True,
    cse: Optional[bool] = None,
) -> GeneratedFunction:
    """Function evaluating :func:`calculate_tgrad` as a vector."""
    flat = _prepare(sys)
    return build_function(
        list(calculate_tgrad(sys)),
        system_arguments(flat, history=flat.is_dde),
        name=name or f"{flat.name}_tgrad",
        history=(flat.iv, flat.unknowns) if flat.is_dde else None,
        inplace=inplace,
        cse=cse,
    )
