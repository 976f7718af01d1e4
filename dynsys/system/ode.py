"""
Continuous-time systems: ordinary and delay differential equations.

Example:
    t = independent_variable("t")
    D = Differential(t)
    x, y = variables("x y", t, default=1.0)
    a, b = parameters("a b", default=0.5)

    sys = ODESystem.from_equations([Equation(D(x), a * x - x * y), Equation(D(y), x * y - b * y)], t, name="lv")
"""

from dataclasses import dataclass

import sympy as sp

from dynsys.errors import IndependentVariableError
from dynsys.ir.expr import collect_vars, is_delay
from dynsys.ir.types import Formalism
from dynsys.system.core import AbstractSystem
from dynsys.system.validation import (
    check_delay,
    check_disjoint,
    check_equations,
    check_independent_variables,
    check_parameters,
    check_variables,
)


@dataclass(frozen=True, eq=False, repr=False)
class ODESystem(AbstractSystem):
    """
    System of differential equations ``D(x) ~ f(x, p, t)`` plus algebraic equations.

    Unknowns may appear delayed, ``x(t - tau)`` with a constant ``tau >= 0``,
    which makes the system a delay differential equation (``is_dde``).
    """

    formalism = Formalism.CONTINUOUS
    operator = sp.Derivative

    def _check_components(self):
        if self.iv is None:
            raise IndependentVariableError("An ODESystem requires an independent variable")
        check_independent_variables([self.iv])
        check_variables(self.unknowns, self.iv)
        check_parameters(self.parameters, self.iv)
        check_disjoint(self.unknowns, self.parameters)
        check_equations(self.equations, self.iv)
        check_equations([e for ev in self.continuous_events for e in ev.equations], self.iv)
        for e in self.equations:
            for v in collect_vars(e.rhs, None):
                if is_delay(v, self.iv):
                    check_delay(v, self.iv)
