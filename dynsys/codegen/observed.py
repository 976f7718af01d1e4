"""
Observed-value functions.

Builds functions that evaluate arbitrary expressions of a system (observed
quantities, states, parameters or new diagnostics built from them) from the
same arguments as the system's right-hand side.
"""

import functools
import logging
import warnings
from collections.abc import Callable
from typing import Any, Optional

import sympy as sp
from beartype import beartype
from sympy.core.function import AppliedUndef

from dynsys.codegen.generator import (
    build_function,
    insert_history,
    index_cache,
    substitute_observed,
    system_arguments,
    system_substitutions,
    unbound_variables,
)
from dynsys.config import config
from dynsys.errors import ResolutionError
from dynsys.ir.expr import collect_vars, fixpoint_substitute
from dynsys.ir.variable import getname
from dynsys.system.core import AbstractSystem, expand_parameters
from dynsys.system.transforms import flatten

logger = logging.getLogger(__name__)


def _known_variables(sys: AbstractSystem, inputs=()) -> dict:
    known = dict.fromkeys(e.lhs for e in sys.observed)
    known.update(dict.fromkeys(sys.unknowns))
    known.update(dict.fromkeys(sys.parameters))
    known.update(dict.fromkeys(expand_parameters(sys.parameters)))
    known.update(dict.fromkeys(sys.dependent_parameters))
    known.update(dict.fromkeys(inputs))
    return known


def name_table(sys: AbstractSystem, prefix: str, inputs=()) -> dict:
    """Bare and ``prefix``-namespaced names of every resolvable variable."""
    sep = config.NAMESPACE_SEPARATOR
    table = {}
    for v in _known_variables(sys, inputs):
        name = getname(v)
        table.setdefault(name, v)
        table.setdefault(f"{prefix}{sep}{name}", v)
    if sys.iv is not None:
        table.setdefault(getname(sys.iv), sys.iv)
    return table


def resolve_target(target, sys: AbstractSystem, table: dict):
    """
    Expression of ``target`` over the system's own variables.

    Names and namespaced symbols are looked up in ``table``; variables that
    cannot be matched are left in place.
    """
    if isinstance(target, str):
        if target not in table:
            raise ResolutionError(f"System '{sys.name}' has no variable named '{target}'")
        return table[target]
    target = sp.sympify(target)
    known = set(table.values())
    mapping = {}
    for v in collect_vars(target, None):
        if v in known:
            continue
        match = table.get(getname(v))
        if match is None:
            continue
        if isinstance(v, AppliedUndef) and isinstance(match, AppliedUndef) and v.args != match.args:
            match = match.func(*v.args)
        mapping[v] = match
    return target.xreplace(mapping) if mapping else target


def _usable_observed(sys: AbstractSystem, param_only: bool) -> tuple:
    if not param_only:
        return sys.observed
    if not sys.split:
        return ()
    timeseries = index_cache(sys).observed_timeseries
    return tuple(e for e in sys.observed if not timeseries.get(e.lhs, True))


def _with_output_type(func: Callable, output_type: Callable) -> Callable:
    @functools.wraps(func)
    def wrapper(*args):
        return output_type(func(*args))

    return wrapper


@beartype
def build_explicit_observed_function(
    sys: AbstractSystem,
    targets: Any,
    *,
    inputs: Optional[Any] = None,
    expression: bool = False,
    return_inplace: bool = False,
    param_only: bool = False,
    throw: Optional[bool] = None,
    output_type: Optional[Callable] = None,
    name: Optional[str] = None,
    cse: Optional[bool] = None,
):
    """
    Build a function evaluating ``targets`` from state, inputs, parameters and time.

    Parameters
    ----------
    sys : AbstractSystem
        System whose observed equations, unknowns and parameters resolve the targets.
    targets : expression, name, or list/tuple of them
        A scalar target gives a scalar-valued function; a list or tuple a vector-valued one.
    inputs : sequence, optional
        Parameters passed as a separate vector after the state.
    expression : bool
        Return the generated source text instead of callables.
    return_inplace : bool
        For vector targets return ``(oop, iip)``.
    param_only : bool
        Drop the state and time arguments; only observed quantities that do not
        depend on time series may be used (none unless parameters are split).
    throw : bool, optional
        Raise on unresolved variables (default ``config.OBSERVED_THROW``);
        otherwise warn and evaluate them as NaN.
    output_type : callable, optional
        Applied to the result of vector-valued functions (e.g. ``tuple``).

    Raises
    ------
    ResolutionError
        If a target references a variable that cannot be resolved.
    """
    throw = config.OBSERVED_THROW if throw is None else throw
    flat = flatten(sys)
    inputs = tuple(inputs or ())
    is_vector = isinstance(targets, (list, tuple))
    target_list = list(targets) if is_vector else [targets]

    table = name_table(flat, sys.name, inputs)
    exprs = [resolve_target(t, flat, table) for t in target_list]
    exprs = substitute_observed(exprs, _usable_observed(flat, param_only))
    mapping = system_substitutions(flat)
    if mapping:
        exprs = [fixpoint_substitute(e, mapping) for e in exprs]

    history = flat.is_dde and not param_only
    arguments = system_arguments(flat, inputs=inputs, include_state=not param_only, history=history)
    if param_only:
        arguments = [a for a in arguments if a.name != "t"]

    if history:
        exprs = insert_history(exprs, flat.iv, flat.unknowns)
    unresolved = unbound_variables(exprs, arguments)
    if unresolved:
        message = f"Observed targets of '{sys.name}' reference {list(unresolved)}, which cannot be resolved"
        if param_only:
            message += " from the parameters alone"
        if throw:
            raise ResolutionError(message)
        warnings.warn(message + "; they evaluate to NaN", UserWarning, stacklevel=2)
        exprs = [e.xreplace({v: sp.nan for v in unresolved}) for e in exprs]

    gen = build_function(
        exprs if is_vector else exprs[0],
        arguments,
        name=name or f"{flat.name}_observed",
        inplace=is_vector and return_inplace,
        cse=cse,
    )
    logger.debug("built observed function for %d targets of %s", len(exprs), sys.name)

    if expression:
        return (gen.source, gen.iip_source) if is_vector and return_inplace else gen.source
    oop = _with_output_type(gen.oop, output_type) if is_vector and output_type is not None else gen
    if is_vector and return_inplace:
        return oop, gen.iip
    return oop


def _cache_key(target):
    if isinstance(target, str):
        return target
    if isinstance(target, (list, tuple)):
        return (type(target).__name__,) + tuple(_cache_key(t) for t in target)
    return sp.sympify(target)


class ObservedFunctionCache:
    """
    Per-target memoized observed functions.

    Example:
        obs = ObservedFunctionCache(sys)
        obs(sys.y, u, p, t)
    """

    def __init__(self, sys: AbstractSystem, *, throw: Optional[bool] = None, cse: Optional[bool] = None):
        self.sys = sys
        self.throw = throw
        self.cse = cse
        self._functions = {}

    def function(self, target):
        key = _cache_key(target)
        if key not in self._functions:
            self._functions[key] = build_explicit_observed_function(self.sys, target, throw=self.throw, cse=self.cse)
        return self._functions[key]

    def __call__(self, target, *args):
        return self.function(target)(*args)

    def __contains__(self, target):
        return _cache_key(target) in self._functions

    def __len__(self):
        return len(self._functions)
