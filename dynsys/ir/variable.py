"""
Variable declaration and metadata.

Variables are sympy objects. Declaring one through this module attaches a
:class:`VariableMetadata` record (kind, default, guess, unit, ...) to it. The
record is not part of the variable's identity: two declarations of ``x(t)``
compare equal whatever their defaults.

Examples:
    t = independent_variable("t")
    x, y = variables("x y", t, default=0.0)
    a, b = parameters("a b", default=1.0)
    g = constant("g", 9.81)
    k = parameter_array("k", 3)
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any, Optional, Union

import sympy as sp
from beartype import beartype
from sympy.core.function import AppliedUndef

from dynsys.errors import ArgumentError
from dynsys.ir.expr import ShiftTerm, unwrap
from dynsys.ir.types import Scope, VariableKind

_METADATA_ATTR = "_dynsys_metadata"


@dataclass(frozen=True)
class VariableMetadata:
    """Metadata attached to a declared variable."""

    kind: VariableKind
    default: Any = None
    guess: Any = None
    unit: Any = None  # sympy.physics.units quantity or product of quantities
    description: str = ""
    scope: Scope = Scope.LOCAL
    time_varying: bool = False  # Parameter updated by discrete events
    shape: Optional[tuple] = None  # Parameter arrays only


class IndependentVariable(sp.Symbol):
    """Independent variable of a time-dependent system."""


class Parameter(sp.Symbol):
    """Scalar parameter."""


class Constant(sp.Symbol):
    """Parameter with a literal value, eligible for elimination."""


class Unknown(sp.Symbol):
    """Unknown of a static (time-independent) system."""


def _attach(obj, meta: Optional[VariableMetadata]):
    if meta is not None:
        setattr(obj, _METADATA_ATTR, meta)
    return obj


def _split_names(names) -> list[str]:
    if isinstance(names, str):
        return [n for n in re.split(r"[\s,]+", names) if n]
    return list(names)


def _symbol_base(var):
    if isinstance(var, sp.Indexed):
        var = var.base
    if isinstance(var, sp.IndexedBase):
        var = var.label
    return var


def get_metadata(var) -> Optional[VariableMetadata]:
    """Metadata attached to ``var`` (looking through array elements), or None."""
    return getattr(_symbol_base(var), _METADATA_ATTR, None)


def set_metadata(var, meta: Optional[VariableMetadata]):
    """Attach ``meta`` to ``var`` in place and return ``var``."""
    base = _symbol_base(var)
    if isinstance(base, AppliedUndef):
        _attach(base.func, meta)
    else:
        _attach(base, meta)
    return var


def _applied(name: str, meta: Optional[VariableMetadata], args):
    # sympy caches applications by value, so the result may carry an earlier class
    return set_metadata(sp.Function(name)(*args), meta)


# =============================================================================
# Declarations
# =============================================================================


@beartype
def independent_variable(name: str = "t", *, unit=None, description: str = ""):
    """Declare the independent variable of a time-dependent system."""
    return _attach(
        IndependentVariable(name),
        VariableMetadata(VariableKind.INDEPENDENT, unit=unit, description=description, scope=Scope.GLOBAL),
    )


@beartype
def variable(
    name: str,
    iv=None,
    *,
    default=None,
    guess=None,
    unit=None,
    description: str = "",
    scope: Scope = Scope.LOCAL,
):
    """
    Declare one unknown.

    With an independent variable the result is the applied function ``name(iv)``;
    without one it is an :class:`Unknown` symbol for static systems.
    """
    meta = VariableMetadata(
        VariableKind.UNKNOWN, default=default, guess=guess, unit=unit, description=description, scope=scope
    )
    if iv is None:
        return _attach(Unknown(name), meta)
    return _applied(name, meta, (iv,))


@beartype
def variables(names: Union[str, Iterable[str]], iv=None, **kwargs) -> tuple:
    """Declare several unknowns sharing the same keyword metadata."""
    return tuple(variable(n, iv, **kwargs) for n in _split_names(names))


@beartype
def parameter(
    name: str,
    *,
    default=None,
    guess=None,
    unit=None,
    description: str = "",
    scope: Scope = Scope.LOCAL,
    time_varying: bool = False,
    iv=None,
):
    """
    Declare one parameter.

    Passing ``iv`` declares a time-dependent parameter ``name(iv)`` (an input
    signal held fixed by the solver between updates).
    """
    meta = VariableMetadata(
        VariableKind.PARAMETER,
        default=default,
        guess=guess,
        unit=unit,
        description=description,
        scope=scope,
        time_varying=time_varying,
    )
    if iv is not None:
        return _applied(name, meta, (iv,))
    return _attach(Parameter(name), meta)


@beartype
def parameters(names: Union[str, Iterable[str]], **kwargs) -> tuple:
    return tuple(parameter(n, **kwargs) for n in _split_names(names))


@beartype
def parameter_array(name: str, shape, *, default=None, unit=None, description: str = ""):
    """Declare an array parameter; elements are addressed as ``k[i]``."""
    if isinstance(shape, int):
        shape = (shape,)
    shape = tuple(shape)
    label = _attach(
        Parameter(name),
        VariableMetadata(VariableKind.PARAMETER, default=default, unit=unit, description=description, shape=shape),
    )
    return sp.IndexedBase(label, shape=shape)


@beartype
def constant(name: str, value=None, *, unit=None, description: str = ""):
    """Declare a constant. A constant must carry a value."""
    if value is None:
        raise ArgumentError(f"Constant `{name}` must be assigned a value")
    return _attach(
        Constant(name),
        VariableMetadata(VariableKind.CONSTANT, default=value, unit=unit, description=description),
    )


def constants(**values) -> tuple:
    """Declare several constants: ``constants(g=9.81, c=3e8)``."""
    return tuple(constant(name, value) for name, value in values.items())


# =============================================================================
# Queries
# =============================================================================


def getname(var) -> str:
    """Name of a variable, looking through derivative/shift operators."""
    var = unwrap(var)
    if isinstance(var, sp.Indexed):
        idx = ",".join(str(i) for i in var.indices)
        return f"{getname(var.base)}[{idx}]"
    if isinstance(var, sp.IndexedBase):
        return var.label.name
    if isinstance(var, AppliedUndef):
        return var.func.__name__
    if isinstance(var, sp.Symbol):
        return var.name
    raise TypeError(f"{var} is not a variable")


def getdefault(var):
    meta = get_metadata(var)
    return None if meta is None else meta.default


def getguess(var):
    meta = get_metadata(var)
    return None if meta is None else meta.guess


def getunit(var):
    meta = get_metadata(var)
    return None if meta is None else meta.unit


def is_independent_variable(var) -> bool:
    if isinstance(var, IndependentVariable):
        return True
    meta = get_metadata(var)
    return meta is not None and meta.kind is VariableKind.INDEPENDENT


def is_constant(var) -> bool:
    meta = get_metadata(var)
    return meta is not None and meta.kind is VariableKind.CONSTANT


def is_parameter(var) -> bool:
    """
    True if ``var`` is parameter-typed.

    Declared parameters, controls and constants are parameters. A plain sympy
    symbol without metadata is treated as a parameter too.
    """
    var = _symbol_base(var)
    meta = get_metadata(var)
    if meta is not None:
        return meta.kind in (VariableKind.PARAMETER, VariableKind.CONTROL, VariableKind.CONSTANT)
    return type(var) is sp.Symbol


def is_time_varying(var) -> bool:
    meta = get_metadata(var)
    return meta is not None and meta.time_varying


def is_global(var) -> bool:
    meta = get_metadata(var)
    return meta is not None and meta.scope is Scope.GLOBAL


def with_metadata(var, **changes):
    """Copy of ``var`` under the same name whose metadata has ``changes`` applied."""
    meta = get_metadata(var)
    if meta is None:
        meta = VariableMetadata(VariableKind.PARAMETER if is_parameter(var) else VariableKind.UNKNOWN)
    return rename(var, getname(_symbol_base(var)), meta=replace(meta, **changes))


def rename(var, name: str, meta: Optional[VariableMetadata] = None):
    """
    Rebuild ``var`` under a new name keeping its kind and metadata.

    Operator applications are rebuilt around the renamed operand.
    """
    if meta is None:
        meta = get_metadata(var)
    if isinstance(var, sp.Derivative):
        return sp.Derivative(rename(var.expr, name, meta), *var.variable_count)
    if isinstance(var, ShiftTerm):
        return ShiftTerm(rename(var.var, name, meta), var.iv, var.steps, var.dt)
    if isinstance(var, sp.Indexed):
        return rename(var.base, name, meta)[var.indices]
    if isinstance(var, sp.IndexedBase):
        return sp.IndexedBase(rename(var.label, name, meta), shape=var.shape)
    if isinstance(var, AppliedUndef):
        return _applied(name, meta, var.args)
    if isinstance(var, sp.Symbol):
        if type(var) is sp.Symbol:
            return sp.Symbol(name)
        return _attach(type(var)(name), meta)
    raise TypeError(f"Cannot rename {var}")


def as_time_dependent(var, iv):
    """Wrap a bare symbol as ``name(iv)``; applied functions are re-applied to ``iv``."""
    meta = get_metadata(var)
    if isinstance(var, AppliedUndef):
        if len(var.args) != 1:
            raise ValueError(f"{var} has more than one argument")
        if var.args[0] == iv:
            return var
        return var.func(iv)
    return _applied(getname(var), meta, (iv,))
