"""
Python renderers for :class:`FunctionIR`.

- :func:`render_source` prints a self-contained Python function that uses
  ``numpy`` for arithmetic
- :func:`compile_function` turns the IR into a callable through
  :func:`sympy.lambdify` with the same printer

Both variants are generated from the same IR: the out-of-place form returns a
fresh value, the in-place form writes into its first argument ``out`` and
returns ``None``.
"""

import logging
import textwrap

import numpy
import sympy as sp
from sympy.printing.numpy import NumPyPrinter

from dynsys.codegen.ir import ArgumentKind, FunctionIR

logger = logging.getLogger(__name__)


class SourcePrinter(NumPyPrinter):
    """NumPy printer that knows how to call the state history function."""

    def __init__(self, history_name: str = "h", history_arguments: tuple = (), settings=None):
        super().__init__(settings or {"fully_qualified_modules": True})
        self.history_name = history_name
        self.history_arguments = tuple(history_arguments)

    def _print_HistoryTerm(self, expr):
        args = ", ".join(self.history_arguments + (self._print(expr.time),))
        return f"{self.history_name}({args})[{expr.index}]"


def _history_name(ir: FunctionIR) -> str:
    for arg in ir.arguments:
        if arg.kind is ArgumentKind.HISTORY:
            return arg.name
    return "h"


def _printer(ir: FunctionIR) -> SourcePrinter:
    return SourcePrinter(_history_name(ir), ir.history_arguments)


def _index(flat: int, shape: tuple) -> str:
    if len(shape) == 2:
        return f"{flat // shape[1]}, {flat % shape[1]}"
    return str(flat)


def _body(ir: FunctionIR, printer: SourcePrinter) -> list:
    return [f"{printer._print(sym)} = {printer.doprint(expr)}" for sym, expr in ir.assignments]


def render_source(ir: FunctionIR, inplace: bool = False) -> str:
    """
    Python source of ``ir``.

    Parameters
    ----------
    ir : FunctionIR
        Lowered function.
    inplace : bool
        Emit ``name_inplace(out, ...)`` writing into ``out`` instead of returning.

    Raises
    ------
    ValueError
        If an in-place variant is requested for a scalar output.
    """
    printer = _printer(ir)
    args = list(ir.argument_names)
    lines = _body(ir, printer)
    outputs = [printer.doprint(e) for e in ir.outputs]

    if inplace:
        if ir.is_scalar:
            raise ValueError(f"{ir.name} has a scalar output; only the out-of-place form exists")
        name = f"{ir.name}_inplace"
        args = ["out"] + args
        lines += [f"out[{_index(i, ir.shape)}] = {o}" for i, o in enumerate(outputs)]
        lines.append("return None")
    else:
        name = ir.name
        if ir.is_scalar:
            lines.append(f"return {outputs[0]}")
        elif len(ir.shape) == 2:
            rows, cols = ir.shape
            matrix = ", ".join("[" + ", ".join(outputs[r * cols : (r + 1) * cols]) + "]" for r in range(rows))
            lines.append(f"return numpy.array([{matrix}]).reshape({rows}, {cols})")
        else:
            lines.append(f"return numpy.array([{', '.join(outputs)}])")

    body = textwrap.indent("\n".join(lines), "    ")
    return f"def {name}({', '.join(args)}):\n{body}\n"


def compile_function(ir: FunctionIR, inplace: bool = False):
    """
    Compile ``ir`` into a callable with :func:`sympy.lambdify`.

    The printer resolves the numpy names it emits through lambdify's module
    imports, so functions such as ``Min`` or ``Piecewise`` that print helper
    calls work without a hand-built namespace.

    Raises
    ------
    ValueError
        If an in-place variant is requested for a scalar output.
    """
    if inplace and ir.is_scalar:
        raise ValueError(f"{ir.name} has a scalar output; only the out-of-place form exists")
    printer = SourcePrinter(
        _history_name(ir),
        ir.history_arguments,
        {"fully_qualified_modules": False, "inline": True, "allow_unknown_functions": True},
    )
    outputs = ir.outputs[0] if ir.is_scalar else list(ir.outputs)
    raw = sp.lambdify(
        [sp.Symbol(n) for n in ir.argument_names],
        outputs,
        modules=["numpy"],
        printer=printer,
        cse=lambda _: (list(ir.assignments), outputs),
        dummify=False,
    )
    raw.__name__ = ir.name
    logger.debug("compiled %s (%d outputs)", ir.name, len(ir.outputs))
    if ir.is_scalar:
        return raw

    shape = ir.shape

    def oop(*args):
        return numpy.array(raw(*args)).reshape(shape)

    oop.__name__ = ir.name
    if not inplace:
        return oop

    def iip(out, *args):
        out[...] = oop(*args)
        return None

    iip.__name__ = f"{ir.name}_inplace"
    return iip
