"""
Static systems of nonlinear equations ``0 ~ f(x, p)``.
"""

from dataclasses import dataclass

from dynsys.errors import ArgumentError
from dynsys.ir.equation import as_equations
from dynsys.ir.expr import has_operator
from dynsys.ir.types import Formalism
from dynsys.system.classify import classify_equations
from dynsys.system.core import AbstractSystem
from dynsys.system.validation import check_disjoint, check_parameters, check_variables


@dataclass(frozen=True, eq=False, repr=False)
class NonlinearSystem(AbstractSystem):
    """
    System of algebraic equations without an independent variable.

    Unknowns are :class:`~dynsys.ir.variable.Unknown` symbols, declared with
    ``variables("x y")`` (no independent variable).
    """

    formalism = Formalism.STATIC
    operator = None

    def _check_components(self):
        if self.iv is not None:
            raise ArgumentError("A NonlinearSystem has no independent variable")
        for e in self.equations:
            if has_operator(e.lhs) or has_operator(e.rhs):
                raise ArgumentError(f"Equations of a NonlinearSystem cannot contain derivative or shift operators: `{e}`")
        check_variables(self.unknowns, None)
        check_parameters(self.parameters, None)
        check_disjoint(self.unknowns, self.parameters)

    @classmethod
    def create(cls, eqs, unknowns, parameters, **kwargs):
        return super().create(eqs, None, unknowns, parameters, **kwargs)

    @classmethod
    def from_equations(cls, eqs, *, unknowns=(), parameters=(), **kwargs):
        eqs = as_equations(eqs)
        cl = classify_equations(eqs, None, None)
        unknowns = tuple(dict.fromkeys(cl.unknowns + tuple(unknowns)))
        parameters = tuple(dict.fromkeys(cl.parameters + tuple(parameters)))
        return cls.create(eqs, unknowns, parameters, **kwargs)
