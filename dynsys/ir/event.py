"""
Event representation in the IR.

Events are discrete state changes triggered by conditions. The affected
variables are written as equations ``target ~ new_value``.
"""

from dataclasses import dataclass
from typing import Any

import sympy as sp

from dynsys.ir.equation import Equation, as_equations


@dataclass(frozen=True)
class ContinuousEvent:
    """
    Event triggered when any root equation crosses zero.

    Example (bouncing ball):
        ContinuousEvent((Equation(h, 0),), (Equation(v, -e * v),))
    """

    conditions: tuple[Equation, ...]
    affects: tuple[Equation, ...] = ()

    def __str__(self):
        conds = ", ".join(str(c) for c in self.conditions)
        affects = "; ".join(str(a) for a in self.affects)
        return f"when [{conds}] => [{affects}]"

    def subs(self, mapping: dict) -> "ContinuousEvent":
        return ContinuousEvent(
            tuple(c.subs(mapping) for c in self.conditions),
            tuple(a.subs(mapping) for a in self.affects),
        )

    @property
    def equations(self) -> tuple:
        return self.conditions + self.affects


@dataclass(frozen=True)
class DiscreteEvent:
    """
    Event triggered at solver steps where a boolean condition holds.

    Example:
        DiscreteEvent(sp.Ge(t, 1.0), (Equation(k, 2 * k),))
    """

    condition: Any
    affects: tuple[Equation, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "condition", sp.sympify(self.condition))

    def __str__(self):
        affects = "; ".join(str(a) for a in self.affects)
        return f"when {self.condition} => [{affects}]"

    def subs(self, mapping: dict) -> "DiscreteEvent":
        return DiscreteEvent(
            self.condition.xreplace(mapping),
            tuple(a.subs(mapping) for a in self.affects),
        )

    @property
    def equations(self) -> tuple:
        return self.affects


def as_continuous_events(events) -> tuple:
    """Normalize events given as objects or ``(conditions, affects)`` pairs."""
    result = []
    for ev in events or ():
        if isinstance(ev, ContinuousEvent):
            result.append(ev)
        else:
            conditions, affects = ev
            result.append(ContinuousEvent(as_equations(conditions), as_equations(affects)))
    return tuple(result)


def as_discrete_events(events) -> tuple:
    result = []
    for ev in events or ():
        if isinstance(ev, DiscreteEvent):
            result.append(ev)
        else:
            condition, affects = ev
            result.append(DiscreteEvent(condition, as_equations(affects)))
    return tuple(result)
