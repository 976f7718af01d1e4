"""
CasADi renderer for :class:`FunctionIR`.

Each argument group becomes an ``SX`` symbol (a column vector for vector
groups, a scalar for the time) and the sympy output expressions are converted
through a dispatch table keyed on sympy node types.
"""

import logging

import casadi as ca
import sympy as sp

from dynsys.codegen.ir import ArgumentKind, FunctionIR, HistoryTerm

logger = logging.getLogger(__name__)


# =============================================================================
# Expression Conversion - Dispatch Table
# =============================================================================


def _product(c, e):
    result = 1
    for arg in e.args:
        result = result * c(arg)
    return result


def _sum(c, e):
    result = 0
    for arg in e.args:
        result = result + c(arg)
    return result


def _fold(op):
    def handler(c, e):
        args = [c(a) for a in e.args]
        result = args[0]
        for arg in args[1:]:
            result = op(result, arg)
        return result

    return handler


def _piecewise(c, e):
    # Nested if_else from the last branch backwards
    result = None
    for expr, cond in reversed(e.args):
        value = c(expr)
        if cond is sp.true or result is None:
            result = value
        else:
            result = ca.if_else(c(cond), value, result)
    return result


def _make_expr_handlers():
    """Create dispatch table for sympy to CasADi conversion."""
    # Unary math operations
    unary_math = {
        sp.sin: lambda c, e: ca.sin(c(e.args[0])),
        sp.cos: lambda c, e: ca.cos(c(e.args[0])),
        sp.tan: lambda c, e: ca.tan(c(e.args[0])),
        sp.asin: lambda c, e: ca.asin(c(e.args[0])),
        sp.acos: lambda c, e: ca.acos(c(e.args[0])),
        sp.atan: lambda c, e: ca.atan(c(e.args[0])),
        sp.exp: lambda c, e: ca.exp(c(e.args[0])),
        sp.log: lambda c, e: ca.log(c(e.args[0])) if len(e.args) == 1 else ca.log(c(e.args[0])) / ca.log(c(e.args[1])),
        sp.Abs: lambda c, e: ca.fabs(c(e.args[0])),
        sp.sign: lambda c, e: ca.sign(c(e.args[0])),
        sp.floor: lambda c, e: ca.floor(c(e.args[0])),
        sp.ceiling: lambda c, e: ca.ceil(c(e.args[0])),
        sp.sinh: lambda c, e: ca.sinh(c(e.args[0])),
        sp.cosh: lambda c, e: ca.cosh(c(e.args[0])),
        sp.tanh: lambda c, e: ca.tanh(c(e.args[0])),
        sp.asinh: lambda c, e: ca.asinh(c(e.args[0])),
        sp.acosh: lambda c, e: ca.acosh(c(e.args[0])),
        sp.atanh: lambda c, e: ca.atanh(c(e.args[0])),
        sp.Not: lambda c, e: ca.logic_not(c(e.args[0])),
    }

    # Arithmetic and n-ary operations
    arithmetic = {
        sp.Add: _sum,
        sp.Mul: _product,
        sp.Pow: lambda c, e: c(e.args[0]) ** c(e.args[1]),
        sp.atan2: lambda c, e: ca.atan2(c(e.args[0]), c(e.args[1])),
        sp.Min: _fold(ca.fmin),
        sp.Max: _fold(ca.fmax),
        sp.Mod: lambda c, e: ca.fmod(c(e.args[0]), c(e.args[1])),
        sp.Piecewise: _piecewise,
    }

    # Comparison operations
    comparisons = {
        sp.StrictLessThan: lambda c, e: c(e.args[0]) < c(e.args[1]),
        sp.LessThan: lambda c, e: c(e.args[0]) <= c(e.args[1]),
        sp.StrictGreaterThan: lambda c, e: c(e.args[0]) > c(e.args[1]),
        sp.GreaterThan: lambda c, e: c(e.args[0]) >= c(e.args[1]),
        sp.Eq: lambda c, e: c(e.args[0]) == c(e.args[1]),
        sp.Ne: lambda c, e: c(e.args[0]) != c(e.args[1]),
    }

    # Logical operations
    logical = {
        sp.And: _fold(ca.logic_and),
        sp.Or: _fold(ca.logic_or),
    }

    return {**unary_math, **arithmetic, **comparisons, **logical}


EXPR_HANDLERS = _make_expr_handlers()


class SympyToCasadi:
    """Convert sympy expressions over IR placeholders to CasADi ``SX``."""

    def __init__(self, symbols: dict):
        self.symbols = symbols

    def __call__(self, expr):
        if expr in self.symbols:
            return self.symbols[expr]
        if expr is sp.true:
            return ca.SX(1)
        if expr is sp.false:
            return ca.SX(0)
        if expr is sp.nan:
            return ca.SX(float("nan"))
        if expr.is_number and not expr.has(sp.I):
            return ca.SX(float(expr))
        if isinstance(expr, HistoryTerm):
            raise NotImplementedError("Delay terms cannot be rendered as a CasADi function")
        if isinstance(expr, (sp.Indexed, sp.Symbol)):
            raise KeyError(f"{expr} does not refer to a function argument")
        handler = EXPR_HANDLERS.get(expr.func)
        if handler is None:
            raise NotImplementedError(f"No CasADi conversion for {expr.func.__name__} in {expr}")
        return handler(self, expr)


def render_casadi(ir: FunctionIR) -> ca.Function:
    """
    CasADi function of ``ir``.

    Vector argument groups become column vectors, the time a scalar. The output
    is a column vector, a matrix, or a scalar following ``ir.shape``.
    """
    inputs = []
    symbols = {}
    for arg in ir.arguments:
        if arg.kind is ArgumentKind.HISTORY:
            raise NotImplementedError("Delay systems cannot be rendered as a CasADi function")
        if arg.kind is ArgumentKind.SCALAR:
            sym = ca.SX.sym(arg.name)
            symbols[sp.Symbol(arg.name)] = sym
        else:
            sym = ca.SX.sym(arg.name, len(arg))
            base = sp.IndexedBase(arg.name)
            for i in range(len(arg)):
                symbols[base[i]] = sym[i]
        inputs.append(sym)

    convert = SympyToCasadi(symbols)
    for lhs, rhs in ir.assignments:
        symbols[lhs] = convert(rhs)
    outputs = [convert(e) for e in ir.outputs]

    if ir.is_scalar:
        out = outputs[0]
    elif len(ir.shape) == 2:
        rows, cols = ir.shape
        out = ca.SX(rows, cols)
        for k, value in enumerate(outputs):
            out[k // cols, k % cols] = value
    else:
        out = ca.vertcat(*outputs) if outputs else ca.SX(0, 1)

    logger.debug("rendered %s as CasADi function with %d outputs", ir.name, len(outputs))
    return ca.Function(ir.name, inputs, [out], list(ir.argument_names), ["out"])
