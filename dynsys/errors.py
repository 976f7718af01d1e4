"""
Exception hierarchy for dynsys.

Construction errors derive from ``ArgumentError`` (a ``ValueError``), validation
errors from ``ValidationError``, transform errors from ``TransformError`` and
observed-value lookups from ``ResolutionError`` (a ``LookupError``).
"""


class DynsysError(Exception):
    """Base class for all dynsys errors."""


class ArgumentError(DynsysError, ValueError):
    """Malformed system definition: overlapping classification, bad names, duplicate targets."""


class ValidationError(DynsysError):
    """A structurally complete system failed a consistency check."""


class UnitError(ValidationError):
    """The two sides of an equation have inconsistent dimensions."""


class InvalidSystemError(ValidationError):
    """The equations are not in the form required by an operation (e.g. explicit ODE form)."""


class IndependentVariableError(ArgumentError, ValidationError):
    """More than one independent variable, or one that differs from the declared one."""


class DelayError(ArgumentError, ValidationError):
    """Invalid delay or shift argument (unbounded or forward-looking)."""


class TransformError(DynsysError):
    """A transform cannot be applied to the given system."""


class NamingCollisionError(TransformError):
    """A transform would introduce a variable whose name already exists."""


class ResolutionError(DynsysError, LookupError):
    """A symbol referenced by an observed target cannot be resolved against the system."""
