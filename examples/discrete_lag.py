"""
Example: A second-order recurrence reduced to first-order form.

``x(k+1) = a * x(k) + b * x(k-1)`` gets a lag unknown for ``x(k-1)``; the
past value is given with a ``Shift(t, -1)(x)`` key.
"""

from dynsys import (
    DiscreteProblem,
    DiscreteSystem,
    Equation,
    Shift,
    independent_variable,
    parameters,
    structural_simplify,
    variable,
)


def main():
    t = independent_variable("t")
    k = Shift(t)
    x = variable("x", t, default=1.0)
    a, b = parameters("a b", default=0.5)

    model = DiscreteSystem.from_equations([Equation(k(x), a * x + b * Shift(t, -1)(x))], t, name="ar2")
    sys = structural_simplify(model)
    for eq in sys.equations:
        print(eq)

    prob = DiscreteProblem.create(sys, {Shift(t, -1)(x): 0.0}, (0, 10))
    u = prob.u0
    for step in range(10):
        print(step, u)
        u = prob.step(u)


if __name__ == "__main__":
    main()
