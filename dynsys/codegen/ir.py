"""
Function intermediate representation.

A :class:`FunctionIR` is the single description every renderer consumes:
ordered argument groups, optional common-subexpression assignments and the
output expressions, all written over positional placeholders (``u[0]``,
``p[2]``, ``t``) instead of the system's own variables.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

import sympy as sp


class ArgumentKind(Enum):
    """How an argument group is passed to a generated function."""

    VECTOR = auto()  # indexable sequence, one entry per symbol
    PARAMETERS = auto()  # parameter block; also forwarded to the history function
    SCALAR = auto()  # a single value (time)
    HISTORY = auto()  # callable h(p..., t) returning past state vectors


class HistoryTerm(sp.Function):
    """Entry ``index`` of the state history evaluated at ``time``."""

    nargs = 2

    @property
    def time(self):
        return self.args[0]

    @property
    def index(self) -> int:
        return int(self.args[1])


@dataclass(frozen=True)
class Argument:
    """A named argument group of a generated function."""

    name: str
    symbols: tuple = ()
    kind: ArgumentKind = ArgumentKind.VECTOR

    def placeholders(self) -> dict:
        """Mapping from each bound symbol to the expression that reads it from this argument."""
        if self.kind is ArgumentKind.SCALAR:
            return {s: sp.Symbol(self.name) for s in self.symbols}
        if self.kind is ArgumentKind.HISTORY:
            return {}
        base = sp.IndexedBase(self.name)
        return {s: base[i] for i, s in enumerate(self.symbols)}

    def __len__(self):
        return len(self.symbols)


def vector_argument(name: str, symbols) -> Argument:
    return Argument(name, tuple(symbols), ArgumentKind.VECTOR)


def parameter_argument(name: str, symbols) -> Argument:
    return Argument(name, tuple(symbols), ArgumentKind.PARAMETERS)


def scalar_argument(name: str, symbol) -> Argument:
    return Argument(name, (symbol,), ArgumentKind.SCALAR)


def history_argument(name: str = "h") -> Argument:
    return Argument(name, (), ArgumentKind.HISTORY)


@dataclass(frozen=True)
class FunctionIR:
    """
    Lowered function ready for rendering.

    Attributes
    ----------
    name : str
        Function name used by every renderer.
    arguments : tuple of Argument
        Argument groups in call order.
    outputs : tuple
        Output expressions over placeholders, flattened in row-major order.
    shape : tuple
        ``()`` for a scalar output, ``(n,)`` for a vector, ``(n, m)`` for a matrix.
    assignments : tuple of (Symbol, expression)
        Common subexpressions, evaluated in order before the outputs.
    """

    name: str
    arguments: tuple
    outputs: tuple
    shape: tuple
    assignments: tuple = ()
    history_arguments: tuple = ()  # parameter blocks passed before the time in h(...)

    @property
    def is_scalar(self) -> bool:
        return self.shape == ()

    @property
    def argument_names(self) -> tuple:
        return tuple(a.name for a in self.arguments)


def output_shape(outputs: Any) -> tuple:
    """Shape and row-major flattened expressions of ``outputs``."""
    if isinstance(outputs, sp.MatrixBase):
        return (outputs.rows, outputs.cols), tuple(sp.sympify(e) for e in outputs)
    if isinstance(outputs, (list, tuple)):
        return (len(outputs),), tuple(sp.sympify(e) for e in outputs)
    return (), (sp.sympify(outputs),)


def lower(name: str, outputs, arguments, *, cse: bool = False) -> FunctionIR:
    """
    Rewrite ``outputs`` over the placeholders of ``arguments``.

    With ``cse`` the outputs are passed through :func:`sympy.cse`; the
    generated temporaries are named ``cse0``, ``cse1``, ...
    """
    shape, exprs = output_shape(outputs)
    mapping = {}
    for arg in arguments:
        mapping.update(arg.placeholders())
    exprs = tuple(e.xreplace(mapping) for e in exprs)

    assignments = ()
    if cse and exprs:
        replacements, reduced = sp.cse(list(exprs), symbols=sp.numbered_symbols("cse"))
        assignments = tuple(replacements)
        exprs = tuple(reduced)

    history_names = tuple(a.name for a in arguments if a.kind is ArgumentKind.PARAMETERS)
    return FunctionIR(
        name=name,
        arguments=tuple(arguments),
        outputs=exprs,
        shape=shape,
        assignments=assignments,
        history_arguments=history_names,
    )
