"""
Tests for diagnostic validation and dimensional checks.
"""

import pytest
import sympy as sp
from sympy.physics.units import kilogram, meter, second

from dynsys import (
    CheckFlags,
    Differential,
    Equation,
    ODESystem,
    UnitError,
    ValidationError,
    independent_variable,
    parameter,
    validate_system,
    variable,
    variables,
)
from dynsys.system.units import check_equation_units, dimension, equivalent
from dynsys.system.validation import ValidationCategory, ValidationSeverity, normalize_checks, wants


@pytest.fixture
def ts():
    return independent_variable("t", unit=second)


def test_valid_system_passes(lotka_volterra):
    result = validate_system(lotka_volterra)
    assert result.is_valid
    assert not result.has_errors
    assert "VALID" in result.summary()


def test_missing_values_are_warnings(t, D):
    x = variable("x", t)
    a = parameter("a")
    sys = ODESystem.from_equations([Equation(D(x), -a * x)], t, name="m")
    result = validate_system(sys)
    assert result.is_valid
    missing = [w for w in result.warnings if w.category == ValidationCategory.MISSING_VALUE]
    assert len(missing) == 2
    assert any("'a'" in str(w) for w in missing)


def test_under_determined(t, D):
    x, y = variables("x y", t, default=0.0)
    sys = ODESystem.from_equations([Equation(D(x), y)], t, name="under")
    result = validate_system(sys)
    assert result.has_errors
    assert result.errors[0].category == ValidationCategory.EQUATION_BALANCE
    assert result.errors[0].severity == ValidationSeverity.ERROR
    assert "under-determined" in result.errors[0].message


def test_balance_check_can_be_skipped(t, D):
    x, y = variables("x y", t, default=0.0)
    sys = ODESystem.from_equations([Equation(D(x), y)], t, name="under")
    assert validate_system(sys, check_balance=False).is_valid


class TestCheckFlags:
    def test_normalize(self):
        assert normalize_checks(True) == CheckFlags.ALL
        assert normalize_checks(False) == CheckFlags.NONE
        assert normalize_checks(CheckFlags.UNITS | CheckFlags.COMPONENTS) & CheckFlags.UNITS

    def test_wants(self):
        assert wants(CheckFlags.ALL, CheckFlags.UNITS)
        assert wants(CheckFlags.UNITS, CheckFlags.UNITS)
        assert not wants(CheckFlags.COMPONENTS, CheckFlags.UNITS)
        assert not wants(CheckFlags.NONE, CheckFlags.COMPONENTS)


class TestUnits:
    def test_consistent_units(self, ts):
        D = Differential(ts)
        x = variable("x", ts, unit=meter)
        v = parameter("v", unit=meter / second)
        sys = ODESystem.from_equations([Equation(D(x), v)], ts, name="move")
        assert sys.unknowns == (x,)

    def test_inconsistent_units(self, ts):
        D = Differential(ts)
        x = variable("x", ts, unit=meter)
        w = parameter("w", unit=meter)
        with pytest.raises(UnitError, match="Unit mismatch"):
            ODESystem.from_equations([Equation(D(x), w)], ts, name="bad")

    def test_unit_error_is_validation_error(self, ts):
        D = Differential(ts)
        x = variable("x", ts, unit=meter)
        m = parameter("m", unit=kilogram)
        with pytest.raises(ValidationError):
            ODESystem.from_equations([Equation(D(x), m)], ts, name="bad")

    def test_units_check_can_be_disabled(self, ts):
        D = Differential(ts)
        x = variable("x", ts, unit=meter)
        w = parameter("w", unit=meter)
        sys = ODESystem.from_equations([Equation(D(x), w)], ts, name="lax", checks=CheckFlags.COMPONENTS)
        assert len(sys.equations) == 1

    def test_inconsistent_sum(self, ts):
        x = variable("x", ts, unit=meter)
        m = parameter("m", unit=kilogram)
        with pytest.raises(UnitError, match="Inconsistent units"):
            dimension(x + m, ts)

    def test_transcendental_argument(self, ts):
        x = variable("x", ts, unit=meter)
        with pytest.raises(UnitError):
            check_equation_units(Equation(x, sp.sin(x)), ts)

    def test_undeclared_units_are_dimensionless(self, t, D):
        x = variable("x", t)
        a = parameter("a")
        check_equation_units(Equation(D(x), -a * x), t)

    def test_difference_of_equal_units(self, ts):
        D = Differential(ts)
        x = variable("x", ts, unit=meter)
        v, w = variables("v w", ts, unit=meter / second)
        sys = ODESystem.from_equations(
            [Equation(D(x), v - w), Equation(D(v), 0), Equation(D(w), 0)], ts, name="rel"
        )
        assert len(sys.unknowns) == 3
        assert equivalent(dimension(v - w, ts), dimension(meter / second))

    def test_derivative_dimension(self, ts):
        D = Differential(ts)
        x = variable("x", ts, unit=meter)
        assert equivalent(dimension(D(D(x)), ts), dimension(meter / second**2))
