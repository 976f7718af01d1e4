"""
Symbolic IR: variables, operators, equations and events over sympy.
"""

from dynsys.ir.equation import Equation, as_equations, eq
from dynsys.ir.event import ContinuousEvent, DiscreteEvent
from dynsys.ir.expr import (
    Differential,
    Shift,
    ShiftTerm,
    collect_vars,
    delayed,
    is_delay,
    substitute,
)
from dynsys.ir.types import CheckFlags, Formalism, Scope, VariableKind
from dynsys.ir.variable import (
    Constant,
    IndependentVariable,
    Parameter,
    Unknown,
    VariableMetadata,
    constant,
    constants,
    get_metadata,
    getdefault,
    getguess,
    getname,
    getunit,
    independent_variable,
    is_constant,
    is_parameter,
    parameter,
    parameter_array,
    parameters,
    variable,
    variables,
)

__all__ = [
    "CheckFlags",
    "Constant",
    "ContinuousEvent",
    "Differential",
    "DiscreteEvent",
    "Equation",
    "Formalism",
    "IndependentVariable",
    "Parameter",
    "Scope",
    "Shift",
    "ShiftTerm",
    "Unknown",
    "VariableKind",
    "VariableMetadata",
    "as_equations",
    "collect_vars",
    "constant",
    "constants",
    "delayed",
    "eq",
    "get_metadata",
    "getdefault",
    "getguess",
    "getname",
    "getunit",
    "independent_variable",
    "is_constant",
    "is_delay",
    "is_parameter",
    "parameter",
    "parameter_array",
    "parameters",
    "substitute",
    "variable",
    "variables",
]
