"""
Systems of equations and the transforms that rewrite them.
"""

from dynsys.system.classify import Classification, classify_equations, topological_sort
from dynsys.system.core import (
    DEFAULT_CONTEXT,
    AbstractSystem,
    ConstructionContext,
    MemoCell,
    SystemTag,
    TagCounter,
    complete,
    rebuild,
)
from dynsys.system.discrete import DiscreteSystem
from dynsys.system.nonlinear import NonlinearSystem
from dynsys.system.ode import ODESystem
from dynsys.system.structural import extract_observed, structural_simplify
from dynsys.system.transforms import (
    add_accumulations,
    convert_system,
    eliminate_constants,
    flatten,
    linearize_shifts,
)
from dynsys.system.validation import ValidationResult, validate_system

__all__ = [
    "AbstractSystem",
    "Classification",
    "ConstructionContext",
    "DEFAULT_CONTEXT",
    "DiscreteSystem",
    "MemoCell",
    "NonlinearSystem",
    "ODESystem",
    "SystemTag",
    "TagCounter",
    "ValidationResult",
    "add_accumulations",
    "classify_equations",
    "complete",
    "convert_system",
    "eliminate_constants",
    "extract_observed",
    "flatten",
    "linearize_shifts",
    "rebuild",
    "structural_simplify",
    "topological_sort",
    "validate_system",
]
