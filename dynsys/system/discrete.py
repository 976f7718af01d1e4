"""
Discrete-time systems: difference equations over the shift operator.

Example:
    t = independent_variable("t")
    k = Shift(t)
    x = variable("x", t, default=1.0)
    r = parameter("r", default=0.5)

    sys = DiscreteSystem.from_equations([Equation(k(x), r * x * (1 - x))], t, name="logistic")
"""

from dataclasses import dataclass

import sympy as sp

from dynsys.errors import ArgumentError, IndependentVariableError
from dynsys.ir.equation import as_equations
from dynsys.ir.expr import ShiftTerm, has_operator
from dynsys.ir.types import Formalism
from dynsys.system.core import AbstractSystem
from dynsys.system.validation import (
    check_disjoint,
    check_equations,
    check_independent_variables,
    check_parameters,
    check_variables,
)


def _check_shift_only(eqs):
    for e in eqs:
        if has_operator(e.lhs, sp.Derivative) or has_operator(e.rhs, sp.Derivative):
            raise ArgumentError(f"Equations in a DiscreteSystem can only have Shift operators, got `{e}`.")


@dataclass(frozen=True, eq=False, repr=False)
class DiscreteSystem(AbstractSystem):
    """
    System of difference equations ``Shift(t, 1)(x) ~ f(x, p, t)``.

    States referenced further in the past (``Shift(t, -2)(x)``) are lowered to
    one-step form by :func:`~dynsys.system.transforms.linearize_shifts`.
    """

    formalism = Formalism.DISCRETE
    operator = ShiftTerm

    def _check_components(self):
        if self.iv is None:
            raise IndependentVariableError("A DiscreteSystem requires an independent variable")
        _check_shift_only(self.equations)
        check_independent_variables([self.iv])
        check_variables(self.unknowns, self.iv)
        check_parameters(self.parameters, self.iv)
        check_disjoint(self.unknowns, self.parameters)
        check_equations(self.equations, self.iv)

    @classmethod
    def from_equations(cls, eqs, iv=None, **kwargs):
        eqs = as_equations(eqs)
        _check_shift_only(eqs)
        return super().from_equations(eqs, iv, **kwargs)
