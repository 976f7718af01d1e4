"""
Example: Mass-spring-damper with an algebraic output.

Declares the model with physical units, reduces it to solver-ready form and
generates the right-hand side, its Jacobian and an observed-value function.
"""

import numpy as np
import sympy as sp
from sympy.physics.units import kilogram, meter, newton, second

from dynsys import (
    Differential,
    Equation,
    ODEProblem,
    ODESystem,
    build_explicit_observed_function,
    calculate_jacobian,
    generate_function,
    independent_variable,
    parameter,
    structural_simplify,
    variable,
)


def create_mass_spring_damper() -> ODESystem:
    """
    m * x'' + c * x' + k * x = F, written as two first-order equations.

    The spring force ``f_spring ~ k * x`` is an algebraic output that
    structural simplification moves to the observed equations.
    """
    t = independent_variable("t", unit=second)
    D = Differential(t)

    x = variable("x", t, default=1.0, unit=meter, description="position")
    v = variable("v", t, default=0.0, unit=meter / second, description="velocity")
    f_spring = variable("f_spring", t, unit=newton, description="spring force")

    m = parameter("m", default=1.0, unit=kilogram, description="mass")
    c = parameter("c", default=0.1, unit=newton * second / meter, description="damping coefficient")
    k = parameter("k", default=1.0, unit=newton / meter, description="spring constant")
    F = parameter("F", default=0.0, unit=newton, description="external force")

    eqs = [
        Equation(D(x), v),
        Equation(D(v), (F - c * v - f_spring) / m),
        Equation(f_spring, k * x),
    ]
    return ODESystem.from_equations(eqs, t, name="msd")


def main():
    model = create_mass_spring_damper()
    print(model)
    print()

    sys = structural_simplify(model)
    print("Unknowns:", [str(u) for u in sys.unknowns])
    print("Observed:")
    for eq in sys.observed:
        print(f"  {eq}")
    print()

    print("Jacobian:")
    sp.pprint(calculate_jacobian(sys))
    print()

    f = generate_function(sys)
    print(f.source)

    prob = ODEProblem.create(sys, {"x": 0.5}, (0.0, 10.0), {"k": 4.0}, jac=True)
    print("u0 =", prob.u0)
    print("p  =", prob.p)
    print("du =", prob.rhs())
    print("J  =")
    print(prob.f.jac(prob.u0, prob.p, 0.0))

    spring = build_explicit_observed_function(sys, "f_spring")
    print("spring force at u0:", spring(prob.u0, prob.p, 0.0))

    # forward Euler, enough to see the oscillation decay
    u, dt = prob.u0.copy(), 0.01
    for _ in range(1000):
        u = u + dt * prob.f(u, prob.p, 0.0)
    print("u(10) ~", np.round(u, 4))


if __name__ == "__main__":
    main()
