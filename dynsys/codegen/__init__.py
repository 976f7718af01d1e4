"""
Code generation: numerical functions, observed values and solver problems.
"""

from dynsys.codegen.generator import (
    GeneratedFunction,
    build_function,
    calculate_control_jacobian,
    calculate_jacobian,
    calculate_tgrad,
    generate_function,
    generate_jacobian,
    generate_tgrad,
)
from dynsys.codegen.ir import Argument, ArgumentKind, FunctionIR, HistoryTerm
from dynsys.codegen.observed import ObservedFunctionCache, build_explicit_observed_function
from dynsys.codegen.problem import (
    DiscreteFunction,
    DiscreteProblem,
    NonlinearFunction,
    NonlinearProblem,
    ODEFunction,
    ODEProblem,
    varmap_to_vars,
)

__all__ = [
    "Argument",
    "ArgumentKind",
    "DiscreteFunction",
    "DiscreteProblem",
    "FunctionIR",
    "GeneratedFunction",
    "HistoryTerm",
    "NonlinearFunction",
    "NonlinearProblem",
    "ODEFunction",
    "ODEProblem",
    "ObservedFunctionCache",
    "build_explicit_observed_function",
    "build_function",
    "calculate_control_jacobian",
    "calculate_jacobian",
    "calculate_tgrad",
    "generate_function",
    "generate_jacobian",
    "generate_tgrad",
    "varmap_to_vars",
]
