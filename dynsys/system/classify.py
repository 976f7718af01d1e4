"""
Variable classification.

Walks an equation set and partitions its free variables into unknowns and
parameters. Operator targets on the left-hand side (``D(x)`` for continuous
systems, ``Shift(t, 1)(x)`` for discrete ones) define the states.
"""

import itertools
from dataclasses import dataclass, field
from collections.abc import Iterable

import sympy as sp

from dynsys.errors import ArgumentError, IndependentVariableError
from dynsys.ir.equation import Equation, as_equations
from dynsys.ir.expr import OPERATOR_TYPES, ShiftTerm, collect_vars, derivative_iv, is_delay, unwrap
from dynsys.ir.types import VariableKind
from dynsys.ir.variable import getdefault, is_constant, is_parameter


@dataclass
class Classification:
    """Result of classifying an equation set."""

    unknowns: tuple = ()
    parameters: tuple = ()
    operator_targets: tuple = ()  # States defined by an LHS operator, in appearance order
    constants: tuple = ()
    delays: tuple = ()  # Delayed applications x(t - tau) seen in the equations
    kinds: dict = field(default_factory=dict)


def collect_var(unknowns: dict, params: dict, var, iv):
    """
    Classify a single variable into ``unknowns`` or ``params``.

    The independent variable and constants are skipped. Variables appearing in a
    default value expression are classified as well.
    """
    if iv is not None and var == iv:
        return
    if is_constant(var):
        return
    if var in unknowns or var in params:
        return
    if is_parameter(var):
        params[var] = None
    else:
        unknowns[var] = None
    default = getdefault(var)
    if isinstance(default, sp.Basic):
        collect_vars_into(unknowns, params, default, iv)


def collect_vars_into(unknowns: dict, params: dict, expr, iv, op=sp.Derivative):
    """Classify every variable of ``expr``; operator nodes are unwrapped to their variable."""
    for var in collect_vars(expr, op):
        if isinstance(var, OPERATOR_TYPES):
            var = unwrap(var)
        collect_var(unknowns, params, var, iv)


def operator_iv(expr):
    """Independent variable an operator node acts on."""
    if isinstance(expr, ShiftTerm):
        return expr.iv
    if isinstance(expr, sp.Derivative):
        return derivative_iv(expr)
    return None


def collapse_array_parameters(params: Iterable) -> dict:
    """
    Replace indexed parameter elements by their array when every element is present.

    ``k[0], k[1], k[2]`` with ``k`` of shape (3,) becomes ``k``; a partial set of
    elements is kept as is.
    """
    params = dict.fromkeys(params)
    complete = {}
    for p in params:
        if isinstance(p, sp.Indexed) and p.base not in complete:
            shape = p.base.shape
            if shape is None:
                complete[p.base] = False
                continue
            ranges = [range(int(n)) for n in shape]
            complete[p.base] = all(p.base[idx] in params for idx in itertools.product(*ranges))

    result = {}
    for p in params:
        if isinstance(p, sp.Indexed) and complete.get(p.base):
            result[p.base] = None
        else:
            result[p] = None
    return result


def collect_constants(exprs) -> tuple:
    """Constants referenced anywhere in ``exprs`` (equations or expressions)."""
    if exprs is None:
        return ()
    found = {}
    for item in exprs:
        parts = (item.lhs, item.rhs) if isinstance(item, Equation) else (item,)
        for part in parts:
            for var in collect_vars(part, None):
                if is_constant(var):
                    found[var] = None
    return tuple(found)


def classify_equations(eqs, iv, op=sp.Derivative, *, extra_exprs: Iterable = ()) -> Classification:
    """
    Classify the variables of ``eqs``.

    Parameters
    ----------
    eqs : sequence of Equation
        Equations to walk.
    iv : sympy.Symbol or None
        Independent variable; excluded from both lists.
    op : type
        Operator whose LHS applications define states (``sympy.Derivative`` or ``ShiftTerm``).
    extra_exprs : iterable
        Further expressions whose variables are classified (parameter dependencies, events).

    Raises
    ------
    ArgumentError
        If an LHS operator target appears more than once.
    IndependentVariableError
        If an LHS operator acts on a variable other than ``iv``.
    """
    eqs = as_equations(eqs)
    unknowns: dict = {}
    params: dict = {}
    targets: dict = {}

    for e in eqs:
        collect_vars_into(unknowns, params, e.lhs, iv, op)
        collect_vars_into(unknowns, params, e.rhs, iv, op)
        if op is not None and isinstance(e.lhs, op):
            lhs_iv = operator_iv(e.lhs)
            if iv is not None and lhs_iv != iv:
                raise IndependentVariableError(
                    f"The operator in `{e}` acts on {lhs_iv}, but the system's independent variable is {iv}. "
                    "A system can only have one independent variable."
                )
            var = unwrap(e.lhs)
            if var in targets:
                raise ArgumentError(f"The operator target {var} is not unique in the system of equations.")
            targets[var] = None

    for expr in extra_exprs:
        collect_vars_into(unknowns, params, expr, iv, op)

    # Pull in whatever appears inside delay arguments (e.g. a delay parameter)
    delays = [v for v in unknowns if is_delay(v, iv)]
    for v in delays:
        collect_vars_into(unknowns, params, v.args[0], iv)

    params = collapse_array_parameters(params)
    states = [v for v in unknowns if not is_delay(v, iv)]
    ordered = list(targets) + [v for v in states if v not in targets]

    kinds = {v: VariableKind.UNKNOWN for v in ordered}
    kinds.update({p: VariableKind.PARAMETER for p in params})
    consts = collect_constants(eqs)
    kinds.update({c: VariableKind.CONSTANT for c in consts})

    return Classification(
        unknowns=tuple(ordered),
        parameters=tuple(params),
        operator_targets=tuple(targets),
        constants=consts,
        delays=tuple(delays),
        kinds=kinds,
    )


def variable_kinds(unknowns, parameters, controls=(), constants=()) -> dict:
    """Explicit classification tag for every variable of a system."""
    kinds = {v: VariableKind.UNKNOWN for v in unknowns}
    kinds.update({p: VariableKind.PARAMETER for p in parameters})
    kinds.update({c: VariableKind.CONTROL for c in controls})
    kinds.update({c: VariableKind.CONSTANT for c in constants})
    return kinds


def topological_sort(dependencies: dict, error=ArgumentError) -> list:
    """
    Return the nodes of ``dependencies`` (node -> nodes it depends on) in dependency order.

    Raises ``error`` if the graph has a cycle.
    """
    result = []
    visited = set()
    temp_mark = set()

    def visit(node):
        if node in temp_mark:
            raise error(f"Circular dependency detected involving {node}")
        if node not in visited:
            temp_mark.add(node)
            for dep in dependencies.get(node, ()):
                visit(dep)
            temp_mark.remove(node)
            visited.add(node)
            result.append(node)

    for node in dependencies:
        if node not in visited:
            visit(node)
    return result


def sort_definitions(eqs, error=ArgumentError) -> tuple:
    """
    Order definitions ``lhs ~ rhs`` so every LHS is defined before it is used.

    Used for parameter dependencies and observed equations.
    """
    eqs = as_equations(eqs)
    by_lhs = {}
    for e in eqs:
        if e.lhs in by_lhs:
            raise error(f"{e.lhs} is defined more than once")
        by_lhs[e.lhs] = e
    deps = {lhs: [v for v in collect_vars(e.rhs, None) if v in by_lhs] for lhs, e in by_lhs.items()}
    return tuple(by_lhs[lhs] for lhs in topological_sort(deps, error))


def process_parameter_dependencies(deps, ps) -> tuple:
    """
    Validate and order parameter dependencies.

    Returns ``(sorted_dependencies, independent_parameters)`` where the second item is
    ``ps`` without the dependent parameters.
    """
    deps = as_equations(deps)
    if not deps:
        return (), tuple(ps)
    for d in deps:
        if not is_parameter(d.lhs):
            raise ArgumentError(f"Left-hand side of parameter dependency `{d}` is not a parameter")
    deps = sort_definitions(deps)
    dependent = {d.lhs for d in deps}
    return deps, tuple(p for p in ps if p not in dependent)


def infer_independent_variable(eqs):
    """The single variable every derivative/shift in ``eqs`` acts on."""
    ivs = {}
    for e in as_equations(eqs):
        for node in collect_vars(e.lhs, OPERATOR_TYPES) | collect_vars(e.rhs, OPERATOR_TYPES):
            if isinstance(node, OPERATOR_TYPES):
                ivs[operator_iv(node)] = None
    if len(ivs) != 1 or None in ivs:
        raise IndependentVariableError(
            f"Cannot infer a single independent variable from the equations (found {list(ivs)}); pass it explicitly"
        )
    return next(iter(ivs))
