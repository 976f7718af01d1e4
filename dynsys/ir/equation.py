"""
Equation representation in the IR.
"""

from dataclasses import dataclass
from typing import Any

import sympy as sp

from dynsys.ir.expr import substitute


@dataclass(frozen=True)
class Equation:
    """
    An equation ``lhs ~ rhs`` over sympy expressions.

    Examples:
        Equation(D(x), -a * x)          # differential
        Equation(Shift(t)(x), x + u)    # difference
        Equation(y, sin(x))             # algebraic / observed
        Equation(0, x**2 + y**2 - 1)    # implicit
    """

    lhs: Any
    rhs: Any

    def __post_init__(self):
        object.__setattr__(self, "lhs", sp.sympify(self.lhs))
        object.__setattr__(self, "rhs", sp.sympify(self.rhs))

    def __str__(self):
        return f"{self.lhs} ~ {self.rhs}"

    def __iter__(self):
        yield self.lhs
        yield self.rhs

    @property
    def residual(self):
        """``rhs - lhs``, zero when the equation holds."""
        return self.rhs - self.lhs

    def subs(self, mapping: dict) -> "Equation":
        """Equation with ``mapping`` substituted structurally into both sides."""
        return Equation(substitute(self.lhs, mapping), substitute(self.rhs, mapping))


def eq(lhs, rhs) -> Equation:
    """Shorthand for ``Equation(lhs, rhs)``."""
    return Equation(lhs, rhs)


def as_equations(eqs) -> tuple:
    """Normalize an equation, a list of equations or ``(lhs, rhs)`` pairs to a tuple of equations."""
    if eqs is None:
        return ()
    if isinstance(eqs, Equation):
        return (eqs,)
    result = []
    for e in eqs:
        if isinstance(e, Equation):
            result.append(e)
        elif isinstance(e, sp.Equality):
            result.append(Equation(e.lhs, e.rhs))
        else:
            lhs, rhs = e
            result.append(Equation(lhs, rhs))
    return tuple(result)
