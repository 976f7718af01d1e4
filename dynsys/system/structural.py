"""
Structural simplification.

Prepares a system for code generation: flattening, constant elimination,
extraction of explicit algebraic equations into observed equations and, for
discrete systems, shift linearization. The result is a completed system whose
``parent`` is the input.
"""

import logging

from sympy.core.function import AppliedUndef

from dynsys.errors import TransformError
from dynsys.ir.equation import Equation
from dynsys.ir.expr import ShiftTerm, collect_vars, fixpoint_substitute, unwrap
from dynsys.system.classify import sort_definitions
from dynsys.system.core import AbstractSystem, complete, rebuild
from dynsys.system.discrete import DiscreteSystem
from dynsys.system.transforms import eliminate_constants, flatten, linearize_shifts

logger = logging.getLogger(__name__)


def _pinned(sys: AbstractSystem) -> set:
    """Unknowns that must stay states: operator targets, shifted or delayed anywhere."""
    pinned = set()
    op = sys.operator
    for e in sys.equations:
        if op is not None and isinstance(e.lhs, op):
            pinned.add(unwrap(e.lhs))
        for side in e:
            for v in collect_vars(side, ShiftTerm):
                if isinstance(v, ShiftTerm):
                    pinned.add(unwrap(v))
    delayed_funcs = {
        v.func
        for e in sys.equations
        for v in collect_vars(e.rhs, None)
        if isinstance(v, AppliedUndef) and sys.iv is not None and v.args[0] != sys.iv and v.has(sys.iv)
    }
    pinned.update(u for u in sys.unknowns if isinstance(u, AppliedUndef) and u.func in delayed_funcs)
    return pinned


def extract_observed(sys: AbstractSystem) -> AbstractSystem:
    """
    Move explicit algebraic equations ``y ~ f(...)`` into the observed equations.

    ``y`` must be an unknown that is not an operator target, is never shifted or
    delayed, and does not appear in its own right-hand side. The observed
    equations are sorted so that every definition precedes its uses.

    Raises
    ------
    TransformError
        If the observed definitions are cyclic.
    """
    pinned = _pinned(sys)
    unknowns = set(sys.unknowns)
    moved = {}
    remaining = []
    for e in sys.equations:
        y = e.lhs
        if y in unknowns and y not in pinned and y not in moved and y not in collect_vars(e.rhs, None):
            moved[y] = e
        else:
            remaining.append(e)
    if not moved:
        return sys

    observed = sort_definitions(sys.observed + tuple(moved.values()), error=TransformError)
    logger.debug("moved %d algebraic equations of %s to observed", len(moved), sys.name)
    return rebuild(
        sys,
        equations=tuple(remaining),
        unknowns=tuple(u for u in sys.unknowns if u not in moved),
        observed=observed,
    )


def apply_parameter_dependencies(sys: AbstractSystem) -> AbstractSystem:
    """Resolve chained parameter dependencies so every right-hand side refers to independent parameters only."""
    if not sys.parameter_dependencies:
        return sys
    mapping = {d.lhs: d.rhs for d in sys.parameter_dependencies}
    resolved = tuple(Equation(d.lhs, fixpoint_substitute(d.rhs, mapping)) for d in sys.parameter_dependencies)
    defaults = dict(sys.defaults)
    defaults.update({d.lhs: d.rhs for d in resolved})
    return rebuild(sys, parameter_dependencies=resolved, defaults=defaults)


def structural_simplify(sys: AbstractSystem, *, split: bool = False) -> AbstractSystem:
    """
    Reduce ``sys`` to a completed, solver-ready system.

    Parameters
    ----------
    sys : AbstractSystem
        System to simplify; hierarchical systems are flattened first.
    split : bool
        Store parameters as separate tunable and discrete blocks.

    Returns
    -------
    AbstractSystem
        Completed system with explicit algebraic equations moved to ``observed``
        and ``parent`` set to ``sys``.
    """
    simplified = flatten(sys)
    simplified = apply_parameter_dependencies(simplified)
    simplified = eliminate_constants(simplified)
    simplified = extract_observed(simplified)
    if isinstance(simplified, DiscreteSystem):
        simplified = linearize_shifts(simplified)
    logger.debug(
        "simplified %s: %d equations, %d unknowns, %d observed",
        sys.name,
        len(simplified.equations),
        len(simplified.unknowns),
        len(simplified.observed),
    )
    return complete(rebuild(simplified, parent=sys), split=split)
