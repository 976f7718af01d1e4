"""
Shared fixtures: the independent variable, operators and a few small systems.
"""

import pytest

from dynsys import (
    Differential,
    DiscreteSystem,
    Equation,
    ODESystem,
    Shift,
    config,
    independent_variable,
    parameter,
    parameters,
    variable,
    variables,
)


@pytest.fixture(autouse=True)
def _reset_config():
    yield
    config.reset()


@pytest.fixture
def t():
    return independent_variable("t")


@pytest.fixture
def D(t):
    return Differential(t)


@pytest.fixture
def lotka_volterra(t, D):
    """Predator-prey model with four parameters."""
    x, y = variables("x y", t, default=1.0)
    a, b, c, d = parameters("a b c d", default=1.0)
    eqs = [
        Equation(D(x), a * x - b * x * y),
        Equation(D(y), c * x * y - d * y),
    ]
    return ODESystem.from_equations(eqs, t, name="lv")


@pytest.fixture
def decay_with_output(t, D):
    """``D(x) ~ -a*y`` with the algebraic output ``y ~ 2*x``."""
    x = variable("x", t, default=1.0)
    y = variable("y", t)
    a = parameter("a", default=2.0)
    return ODESystem.from_equations([Equation(D(x), -a * y), Equation(y, 2 * x)], t, name="s")


@pytest.fixture
def fibonacci(t):
    """``x(k+1) = x(k) + x(k-1)``."""
    k = Shift(t)
    x = variable("x", t, default=1.0)
    return DiscreteSystem.from_equations([Equation(k(x), x + Shift(t, -1)(x))], t, name="fib")
