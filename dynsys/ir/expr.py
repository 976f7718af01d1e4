"""
Expression substrate helpers.

Expressions are plain sympy trees. Time-dependent variables are applied
undefined functions ``x(t)``; the continuous operator is ``sympy.Derivative``
and the discrete operator is the :class:`ShiftTerm` node built by :class:`Shift`.

This module provides:
- the two operator builders (:class:`Differential`, :class:`Shift`)
- free-variable enumeration with an operator filter (:func:`collect_vars`)
- delay detection and unwrapping of nested operators
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Optional

import sympy as sp
from sympy.core.function import AppliedUndef


class ShiftTerm(sp.Function):
    """
    Value of ``var`` advanced by ``steps`` sampling intervals ``dt`` of the clock ``iv``.

    Nested shifts on the same clock are merged and a zero shift evaluates to
    ``var`` itself::

        ShiftTerm(ShiftTerm(x, t, 1, 1), t, 1, 1)  ->  ShiftTerm(x, t, 2, 1)
        ShiftTerm(x, t, 0, 1)                      ->  x
    """

    nargs = 4

    @classmethod
    def eval(cls, var, iv, steps, dt):
        if steps == 0:
            return var
        if isinstance(var, ShiftTerm) and var.iv == iv and var.dt == dt:
            return cls(var.var, iv, var.steps + steps, dt)
        return None

    @property
    def var(self):
        return self.args[0]

    @property
    def iv(self):
        return self.args[1]

    @property
    def steps(self):
        return self.args[2]

    @property
    def dt(self):
        return self.args[3]

    def _sympystr(self, printer):
        step = f", {printer._print(self.dt)}" if self.dt != 1 else ""
        return f"Shift({printer._print(self.iv)}, {printer._print(self.steps)}{step})({printer._print(self.var)})"


@dataclass(frozen=True)
class Differential:
    """
    Time derivative operator.

    Example:
        D = Differential(t)
        D(x)  # Derivative(x(t), t)
    """

    iv: Any

    def __call__(self, expr):
        return sp.Derivative(expr, self.iv)


@dataclass(frozen=True)
class Shift:
    """
    Discrete shift operator on the clock ``iv`` with sampling interval ``dt``.

    Example:
        k = Shift(t)           # one step forward
        k(x)                   # Shift(t, 1)(x(t))
        Shift(t, -1)(x)        # previous value of x
    """

    iv: Any
    steps: int = 1
    dt: Any = 1

    def __call__(self, expr):
        return ShiftTerm(expr, self.iv, self.steps, self.dt)


OPERATOR_TYPES = (sp.Derivative, ShiftTerm)


def is_variable(expr) -> bool:
    """True for symbolic leaves: symbols, applied undefined functions and array elements."""
    if isinstance(expr, (sp.Indexed, sp.IndexedBase, AppliedUndef)):
        return True
    return isinstance(expr, sp.Symbol)


def is_operator(expr, op=OPERATOR_TYPES) -> bool:
    return op is not None and isinstance(expr, op)


def operand(expr):
    """Argument an operator node acts on."""
    if isinstance(expr, sp.Derivative):
        return expr.expr
    if isinstance(expr, ShiftTerm):
        return expr.var
    raise TypeError(f"{expr} is not an operator application")


def unwrap(expr):
    """Strip nested derivative/shift operators and return the underlying variable."""
    while isinstance(expr, OPERATOR_TYPES):
        expr = operand(expr)
    return expr


def derivative_iv(expr):
    """Variable a derivative node differentiates with respect to, or None for mixed/multiple."""
    ivs = {v for v, _ in expr.variable_count}
    if len(ivs) != 1:
        return None
    return next(iter(ivs))


def collect_vars(expr, op=sp.Derivative, out: Optional[dict] = None) -> dict:
    """
    Collect the variables of ``expr`` in order of appearance.

    Nodes of type ``op`` are collected whole (``D(x)`` rather than ``x``); other
    operator nodes are looked through. ``op=None`` looks through every operator.
    The result is an insertion-ordered dict used as an ordered set.
    """
    if out is None:
        out = {}
    _walk(sp.sympify(expr), op, out)
    return out


def _walk(expr, op, out):
    if op is not None and isinstance(expr, op):
        out[expr] = None
        return
    if is_variable(expr):
        out[expr] = None
        return
    if isinstance(expr, OPERATOR_TYPES):
        _walk(operand(expr), op, out)
        return
    for arg in expr.args:
        _walk(arg, op, out)


def free_variables(exprs: Iterable, op=None) -> dict:
    out = {}
    for expr in exprs:
        collect_vars(expr, op, out)
    return out


def has_operator(expr, op=OPERATOR_TYPES) -> bool:
    """True if ``expr`` contains a node of type ``op`` anywhere."""
    expr = sp.sympify(expr)
    if isinstance(expr, op):
        return True
    return any(has_operator(a, op) for a in expr.args)


def is_delay(var, iv) -> bool:
    """True for ``x(t - tau)``: a single-argument application whose argument involves ``iv`` but is not ``iv``."""
    if iv is None or not isinstance(var, AppliedUndef) or len(var.args) != 1:
        return False
    arg = var.args[0]
    return arg != iv and arg.has(iv)


def delay_amount(var, iv):
    """Lag ``tau`` of ``x(t - tau)``."""
    return sp.expand(iv - var.args[0])


def delayed(var, lag):
    """Apply the function of ``x(t)`` to ``t - lag``."""
    if not isinstance(var, AppliedUndef) or len(var.args) != 1:
        raise TypeError(f"{var} is not a single-argument time-dependent variable")
    return var.func(var.args[0] - lag)


def depends_on(var, iv) -> bool:
    """True if ``var`` is a function of ``iv`` (possibly through a delay)."""
    return isinstance(var, AppliedUndef) and any(a.has(iv) for a in var.args)


def substitute(expr, mapping: dict):
    """Structural substitution; keys are matched as whole subtrees."""
    if not mapping:
        return sp.sympify(expr)
    return sp.sympify(expr).xreplace(mapping)


def fixpoint_substitute(expr, mapping: dict, max_iterations: int = 100):
    """Substitute repeatedly until the expression stops changing."""
    expr = sp.sympify(expr)
    for _ in range(max_iterations):
        new = expr.xreplace(mapping)
        if new == expr:
            return new
        expr = new
    raise ValueError(f"Substitution did not converge after {max_iterations} iterations; cyclic definitions?")
