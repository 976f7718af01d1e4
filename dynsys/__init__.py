"""
dynsys - Symbolic modeling of dynamical systems

Declare differential, difference and static equation systems over sympy,
transform them into solver-ready form and generate numerical functions.
"""

__version__ = "0.1.0"

from dynsys.config import config, temp_config
from dynsys.errors import (
    ArgumentError,
    DelayError,
    DynsysError,
    IndependentVariableError,
    InvalidSystemError,
    NamingCollisionError,
    ResolutionError,
    TransformError,
    UnitError,
    ValidationError,
)
from dynsys.ir import *  # noqa: F401,F403
from dynsys.ir import __all__ as _ir_all
from dynsys.system import *  # noqa: F401,F403
from dynsys.system import __all__ as _system_all
from dynsys.codegen import *  # noqa: F401,F403
from dynsys.codegen import __all__ as _codegen_all

__all__ = (
    [
        "__version__",
        "config",
        "temp_config",
        "ArgumentError",
        "DelayError",
        "DynsysError",
        "IndependentVariableError",
        "InvalidSystemError",
        "NamingCollisionError",
        "ResolutionError",
        "TransformError",
        "UnitError",
        "ValidationError",
    ]
    + _ir_all
    + _system_all
    + _codegen_all
)
