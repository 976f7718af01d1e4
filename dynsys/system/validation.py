"""
System validation.

Two layers:
- ``check_*`` functions raise on the first structural problem. System
  constructors run them according to their :class:`CheckFlags`.
- :func:`validate_system` collects non-fatal diagnostics (missing values,
  equation balance) into a :class:`ValidationResult` without raising.
"""

import warnings
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import sympy as sp
from sympy.core.function import AppliedUndef

from dynsys.errors import ArgumentError, DelayError, IndependentVariableError, InvalidSystemError
from dynsys.ir.expr import OPERATOR_TYPES, collect_vars, delay_amount, depends_on, has_operator, is_delay, unwrap
from dynsys.ir.types import CheckFlags
from dynsys.ir.variable import getdefault, is_independent_variable, is_parameter
from dynsys.system.classify import operator_iv


def normalize_checks(checks) -> CheckFlags:
    """Map ``True``/``False``/flags to a :class:`CheckFlags` value."""
    if checks is True:
        return CheckFlags.ALL
    if checks is False or checks is None:
        return CheckFlags.NONE
    return CheckFlags(int(checks))


def wants(checks, flag: CheckFlags) -> bool:
    """True if ``flag`` is enabled by ``checks`` (``ALL`` enables everything)."""
    checks = normalize_checks(checks)
    return bool(checks & CheckFlags.ALL) or bool(checks & flag)


def find_duplicates(items) -> list:
    counts = Counter(items)
    return [item for item, n in counts.items() if n > 1]


# =============================================================================
# Raising checks
# =============================================================================


def check_independent_variables(ivs):
    for iv in ivs:
        if not is_independent_variable(iv):
            warnings.warn(
                f"Independent variable {iv} should be declared with independent_variable()",
                UserWarning,
                stacklevel=3,
            )


def check_equations(eqs, iv):
    """Every derivative/shift in ``eqs`` must act on the declared independent variable."""
    for e in eqs:
        for node in collect_vars(e.lhs, OPERATOR_TYPES) | collect_vars(e.rhs, OPERATOR_TYPES):
            if not isinstance(node, OPERATOR_TYPES):
                continue
            node_iv = operator_iv(node)
            if iv is None:
                raise IndependentVariableError(f"Equation `{e}` uses {node} but the system has no independent variable")
            if node_iv is None:
                raise IndependentVariableError(f"{node} in `{e}` acts on more than one independent variable")
            if node_iv != iv:
                raise IndependentVariableError(
                    f"{node} in `{e}` acts on {node_iv}, but the declared independent variable is {iv}. "
                    "A system can only have one independent variable."
                )


def check_delay(var, iv):
    """A delay ``x(t - tau)`` needs a constant, non-negative ``tau``."""
    lag = delay_amount(var, iv)
    if lag.has(iv):
        raise DelayError(f"Delay of {var} depends on the independent variable {iv}; delays must be bounded")
    nonparams = [v for v in collect_vars(lag, None) if not is_parameter(v)]
    if nonparams:
        raise DelayError(f"Delay of {var} depends on {nonparams}; delays may only depend on parameters")
    if lag.is_number and lag < 0:
        raise DelayError(f"{var} looks {-lag} into the future; forward-looking delays are not allowed")


def check_variables(dvs, iv):
    for dv in dvs:
        if iv is not None and dv == iv:
            raise ArgumentError(f"Independent variable {iv} not allowed in unknowns.")
        if is_parameter(dv):
            raise ArgumentError(f"{dv} is not an unknown. It is a parameter.")
        if iv is None:
            continue
        if is_delay(dv, iv):
            check_delay(dv, iv)
        elif not depends_on(dv, iv):
            raise ArgumentError(f"Variable {dv} is not a function of the independent variable {iv}.")


def check_parameters(ps, iv):
    for p in ps:
        if iv is not None and p == iv:
            raise ArgumentError(f"Independent variable {iv} not allowed in parameters.")
        if not is_parameter(p):
            raise ArgumentError(f"{p} is not a parameter.")


def check_disjoint(dvs, ps):
    overlap = set(dvs) & set(ps)
    if overlap:
        raise ArgumentError(f"Variables {sorted(map(str, overlap))} are declared both as unknowns and parameters.")


def check_unique_names(systems):
    names = [s.name for s in systems]
    duplicates = find_duplicates(names)
    if duplicates:
        raise ArgumentError(f"System names must be unique. Duplicated: {duplicates}")


def check_constraints(constraints, dvs, iv) -> tuple:
    """
    Validate boundary-value constraints such as ``x(0.5) ~ 1`` or ``x(tau) ~ y(tau)``.

    Called variables must be unknowns of the system evaluated at a single point:
    a number, a parameter, or the independent variable itself. A variable
    evaluated at ``iv`` holds over the whole interval and only gets a warning.

    Returns
    -------
    tuple
        Parameters the constraints read, including evaluation points.

    Raises
    ------
    ArgumentError
        If a constraint reads a variable that is not an unknown, calls a
        variable with more than one argument, or evaluates it at anything other
        than a number, a parameter or ``iv``.
    """
    if not constraints:
        return ()
    if iv is None:
        raise ArgumentError("Constraints require a system with an independent variable.")
    dvs = set(dvs)
    found = {}
    for c in constraints:
        for var in collect_vars(c.lhs, None) | collect_vars(c.rhs, None):
            if var == iv:
                continue
            if is_parameter(var):
                found[var] = None
                continue
            if not isinstance(var, AppliedUndef):
                raise ArgumentError(
                    f"Variable {var} in constraint `{c}` is neither a parameter nor an unknown of the system."
                )
            if len(var.args) > 1:
                raise ArgumentError(f"Too many arguments for variable {var}.")
            if var.func(iv) not in dvs:
                raise ArgumentError(
                    f"Variable {var} is not an unknown of the system. "
                    "Called variables must be unknowns of the system."
                )
            (arg,) = var.args
            if arg == iv:
                warnings.warn(
                    f"Constraint `{c}` reads {var} without an evaluation point; "
                    "it is interpreted as holding over the whole interval.",
                    UserWarning,
                    stacklevel=3,
                )
            elif is_parameter(arg):
                found[arg] = None
            elif not sp.sympify(arg).is_number:
                raise ArgumentError(
                    f"Invalid argument specified for variable {var}. "
                    "The argument of the variable should be either the independent variable, a parameter, "
                    "or a value specifying the time that the constraint holds."
                )
    return tuple(found)


def check_lhs(eqs, op, dvs):
    """Every LHS must be an ``op`` application to one of ``dvs``; used before code generation."""
    dvs = set(dvs)
    for e in eqs:
        if not isinstance(e.lhs, op):
            raise InvalidSystemError(f"`{e}` is not in explicit form: the left-hand side must be a {op.__name__}")
        var = unwrap(e.lhs)
        if var not in dvs:
            raise InvalidSystemError(f"The left-hand side of `{e}` is not an unknown of the system")


def check_operator_variables(eqs, op):
    """``op`` may not appear on a right-hand side, and LHS targets must be unique."""
    targets = []
    for e in eqs:
        if has_operator(e.rhs, op):
            raise InvalidSystemError(f"The right-hand side of `{e}` contains a {op.__name__} operator")
        if isinstance(e.lhs, op):
            targets.append(e.lhs)
    duplicates = find_duplicates(targets)
    if duplicates:
        raise InvalidSystemError(f"The operator targets {duplicates} are defined more than once")


# =============================================================================
# Diagnostic report
# =============================================================================


class ValidationSeverity(Enum):
    """Severity level of a validation issue."""

    ERROR = "error"  # Critical issue that prevents correct execution
    WARNING = "warning"  # Issue that may cause problems
    INFO = "info"  # Informational note


class ValidationCategory(Enum):
    """Category of validation issue."""

    MISSING_VALUE = "missing_value"
    EQUATION_BALANCE = "equation_balance"
    STRUCTURAL = "structural"
    UNITS = "units"


@dataclass
class ValidationIssue:
    """A single validation issue."""

    severity: ValidationSeverity
    category: ValidationCategory
    message: str
    location: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        loc = f" at {self.location}" if self.location else ""
        return f"[{self.severity.value.upper()}] {self.category.value}: {self.message}{loc}"


@dataclass
class ValidationResult:
    """Result of system validation."""

    issues: list = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    @property
    def is_valid(self) -> bool:
        """True if there are no errors (warnings are OK)."""
        return not self.has_errors

    @property
    def errors(self) -> list:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> list:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def add(self, severity: ValidationSeverity, category: ValidationCategory, message: str, location=None, **details):
        self.issues.append(ValidationIssue(severity, category, message, location, details))

    def summary(self) -> str:
        status = "VALID" if self.is_valid else "INVALID"
        lines = [
            f"Validation Result: {status}",
            f"  Errors: {len(self.errors)}",
            f"  Warnings: {len(self.warnings)}",
        ]
        if self.issues:
            lines.append("\nIssues:")
            for issue in self.issues:
                lines.append(f"  - {issue}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()


def _check_missing_values(sys: Any, result: ValidationResult):
    for v in sys.unknowns:
        if v not in sys.defaults:
            result.add(
                ValidationSeverity.WARNING,
                ValidationCategory.MISSING_VALUE,
                f"Unknown '{v}' has no default initial value",
                location=f"variable {v}",
            )
    for p in sys.parameters:
        if p not in sys.defaults and getdefault(p) is None:
            result.add(
                ValidationSeverity.WARNING,
                ValidationCategory.MISSING_VALUE,
                f"Parameter '{p}' has no value assigned",
                location=f"variable {p}",
            )


def _check_equation_balance(sys: Any, result: ValidationResult):
    n_equations = len(sys.equations)
    n_unknowns = len(sys.unknowns)
    if n_equations < n_unknowns:
        result.add(
            ValidationSeverity.ERROR,
            ValidationCategory.EQUATION_BALANCE,
            f"System is under-determined: {n_equations} equations for {n_unknowns} unknowns",
            n_equations=n_equations,
            n_unknowns=n_unknowns,
        )
    elif n_equations > n_unknowns:
        result.add(
            ValidationSeverity.ERROR,
            ValidationCategory.EQUATION_BALANCE,
            f"System is over-determined: {n_equations} equations for {n_unknowns} unknowns",
            n_equations=n_equations,
            n_unknowns=n_unknowns,
        )


def validate_system(sys: Any, check_missing_values: bool = True, check_balance: bool = True) -> ValidationResult:
    """
    Collect non-fatal diagnostics for a system.

    Args:
        sys: The system to validate (flattened systems give complete results)
        check_missing_values: Warn about unknowns and parameters without values
        check_balance: Compare the number of equations and unknowns

    Returns:
        ValidationResult containing all issues found
    """
    result = ValidationResult()
    if check_missing_values:
        _check_missing_values(sys, result)
    if check_balance:
        _check_equation_balance(sys, result)
    return result
