"""
Dimensional consistency checks using sympy.physics.units.

The expression tree of each equation side is walked as written: every variable
contributes the dimension of the unit attached to it at declaration
(dimensionless when it has none), derivatives divide by the unit of the
independent variable, and the dimensions of both sides are compared in the SI
dimension system.
"""

import sympy as sp
from sympy.physics.units import Dimension, Quantity
from sympy.physics.units.systems.si import SI

from dynsys.errors import UnitError
from dynsys.ir.expr import ShiftTerm, is_variable
from dynsys.ir.variable import getunit

DIMENSIONLESS = Dimension(1)


def _dimsys():
    return SI.get_dimension_system()


def equivalent(d1, d2) -> bool:
    dimsys = _dimsys()
    return dimsys.get_dimensional_dependencies(d1) == dimsys.get_dimensional_dependencies(d2)


def is_dimensionless(dim) -> bool:
    return equivalent(dim, DIMENSIONLESS)


def dimension(expr, iv=None):
    """
    Dimension of an expression over variables, quantities and numbers.

    Terms are compared before sympy gets a chance to combine them, so ``v - w``
    with both in m/s is a velocity rather than zero.

    Raises
    ------
    UnitError
        If terms of a sum disagree, or a transcendental function or exponent gets a
        dimensional argument.
    """
    expr = sp.sympify(expr)
    if isinstance(expr, Quantity):
        return SI.get_quantity_dimension(expr)
    if isinstance(expr, Dimension):
        return expr
    if isinstance(expr, sp.Derivative):
        order = sum(int(n) for _, n in expr.variable_count)
        iv_dim = DIMENSIONLESS if iv is None else dimension(iv)
        return dimension(expr.expr, iv) / iv_dim**order
    if isinstance(expr, ShiftTerm):
        return dimension(expr.var, iv)
    if is_variable(expr):
        unit = getunit(expr)
        return DIMENSIONLESS if unit is None else dimension(unit)
    if expr.is_number:
        return DIMENSIONLESS
    if isinstance(expr, (sp.Add, sp.Min, sp.Max)):
        return _common_dimension(expr.args, expr, iv)
    if isinstance(expr, sp.Mul):
        result = DIMENSIONLESS
        for arg in expr.args:
            result = result * dimension(arg, iv)
        return result
    if isinstance(expr, sp.Pow):
        base, exponent = expr.args
        if not is_dimensionless(dimension(exponent, iv)):
            raise UnitError(f"Exponent of {expr} must be dimensionless")
        base_dim = dimension(base, iv)
        if is_dimensionless(base_dim):
            return DIMENSIONLESS
        if not exponent.is_number:
            raise UnitError(f"{expr} raises a dimensional quantity to a symbolic power")
        return base_dim**exponent
    if isinstance(expr, sp.Abs):
        return dimension(expr.args[0], iv)
    if isinstance(expr, sp.Piecewise):
        return _common_dimension([e for e, _ in expr.args], expr, iv)
    if isinstance(expr, sp.Function):
        for arg in expr.args:
            arg_dim = dimension(arg, iv)
            if not is_dimensionless(arg_dim):
                raise UnitError(f"Argument of {expr.func} must be dimensionless, got {arg_dim}")
        return DIMENSIONLESS
    return DIMENSIONLESS


def _common_dimension(terms, expr, iv=None):
    dims = [dimension(t, iv) for t in terms if t != 0]
    if not dims:
        return DIMENSIONLESS
    first = dims[0]
    for d in dims[1:]:
        if not equivalent(first, d):
            raise UnitError(f"Inconsistent units in {expr}: {first} vs {d}")
    return first


def check_equation_units(equation, iv=None):
    """Raise :class:`UnitError` if the two sides of ``equation`` have different dimensions."""
    if equation.lhs == 0 or equation.rhs == 0:
        sides = [s for s in (equation.lhs, equation.rhs) if s != 0]
        for side in sides:
            dimension(side, iv)
        return
    try:
        lhs = dimension(equation.lhs, iv)
        rhs = dimension(equation.rhs, iv)
    except UnitError as e:
        raise UnitError(f"In equation `{equation}`: {e}") from e
    if not equivalent(lhs, rhs):
        raise UnitError(f"Unit mismatch in equation `{equation}`: left side is {lhs}, right side is {rhs}")


def check_units(equations, iv=None):
    for e in equations:
        check_equation_units(e, iv)
