"""
Type definitions for the IR.
"""

from enum import Enum, IntFlag, auto


class VariableKind(Enum):
    """Classification of a variable within a system."""

    UNKNOWN = auto()  # Solved-for state
    PARAMETER = auto()  # Fixed for a run, or derived from other parameters
    CONTROL = auto()  # Parameter usable as an external input
    CONSTANT = auto()  # Literal-valued symbol, eligible for elimination
    INDEPENDENT = auto()  # Independent variable (usually time)


class Scope(Enum):
    """How a variable is renamed when its system is namespaced."""

    LOCAL = auto()  # Prefixed with the owning system's name
    GLOBAL = auto()  # Never prefixed


class Formalism(Enum):
    """Operator formalism of a system."""

    CONTINUOUS = auto()  # Derivative operator
    DISCRETE = auto()  # Shift operator
    STATIC = auto()  # No independent variable


class CheckFlags(IntFlag):
    """Construction-time checks, combinable as a bitmask."""

    NONE = 0
    ALL = 1 << 0
    COMPONENTS = 1 << 1
    UNITS = 1 << 2
