"""
System structure shared by every formalism.

A system is a frozen dataclass. Construction validates the content according
to :class:`CheckFlags` and stamps the result with a structural tag drawn from
the :class:`ConstructionContext`. Transforms never mutate a system; they build
a new one with :func:`rebuild`.

Derived artifacts (Jacobian, time gradient, ...) live in write-once
:class:`MemoCell` entries of the system's :class:`SystemCache`.
"""

import dataclasses
import itertools
import threading
import uuid
import warnings
from collections import Counter
from collections.abc import Callable
from dataclasses import InitVar, dataclass, field
from typing import Any, NamedTuple, Optional

import sympy as sp
from sympy.core.function import AppliedUndef

from dynsys.config import config
from dynsys.errors import ArgumentError, ResolutionError
from dynsys.ir.equation import as_equations
from dynsys.ir.event import as_continuous_events, as_discrete_events
from dynsys.ir.expr import collect_vars, is_delay, substitute
from dynsys.ir.types import CheckFlags, Formalism, VariableKind
from dynsys.ir.variable import getdefault, getguess, getname, is_global, is_time_varying, rename
from dynsys.system.classify import (
    classify_equations,
    collect_constants,
    infer_independent_variable,
    process_parameter_dependencies,
    variable_kinds,
)
from dynsys.system.units import check_units
from dynsys.system.validation import check_constraints, check_unique_names, normalize_checks, wants

# =============================================================================
# Tags and construction context
# =============================================================================


class SystemTag(NamedTuple):
    """Structural tag: the counter that issued it and its serial number."""

    source: str
    serial: int


class TagCounter:
    """Monotonically increasing counter, safe to share between threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0
        self.source = uuid.uuid4().hex

    @property
    def value(self) -> int:
        return self._value

    def next(self) -> SystemTag:
        with self._lock:
            self._value += 1
            return SystemTag(self.source, self._value)


@dataclass
class ConstructionContext:
    """Owns the tag counter used to stamp newly constructed systems."""

    counter: TagCounter = field(default_factory=TagCounter)

    def new_tag(self) -> SystemTag:
        return self.counter.next()


DEFAULT_CONTEXT = ConstructionContext()


# =============================================================================
# Memoized derived artifacts
# =============================================================================


class MemoCell:
    """
    Compute-once cache entry.

    Concurrent first accesses may both compute; either result is equivalent and
    the first stored value wins.
    """

    __slots__ = ("_value", "_set")

    def __init__(self):
        self._value = None
        self._set = False

    @property
    def is_computed(self) -> bool:
        return self._set

    def get(self, compute: Callable):
        if not self._set:
            value = compute()
            if not self._set:
                self._value = value
                self._set = True
        return self._value

    def peek(self, default=None):
        return self._value if self._set else default


@dataclass(eq=False)
class SystemCache:
    """Lazily computed artifacts of a system. Never part of equality."""

    jacobian: MemoCell = field(default_factory=MemoCell)
    tgrad: MemoCell = field(default_factory=MemoCell)
    ctrl_jacobian: MemoCell = field(default_factory=MemoCell)
    flattened: MemoCell = field(default_factory=MemoCell)


@dataclass(frozen=True)
class IndexCache:
    """Positions of unknowns and parameters in generated function arguments."""

    unknown_index: dict
    parameter_blocks: tuple  # tuple of tuples of scalar parameters
    block_names: tuple
    parameter_index: dict  # scalar parameter -> (block, position)
    observed_timeseries: dict  # observed LHS -> depends on time series

    def block_of(self, p) -> int:
        return self.parameter_index[p][0]


def expand_parameters(ps) -> list:
    """Scalar parameters of ``ps``; array parameters expand to their elements in row-major order."""
    result = []
    for p in ps:
        if isinstance(p, sp.IndexedBase) and p.shape is not None:
            for idx in itertools.product(*(range(int(n)) for n in p.shape)):
                result.append(p[idx])
        else:
            result.append(p)
    return result


def discrete_parameters(sys) -> set:
    """Parameters updated at runtime: declared time-varying or assigned by an event."""
    found = {p for p in expand_parameters(sys.parameters) if is_time_varying(p)}
    params = set(expand_parameters(sys.parameters))
    for ev in tuple(sys.continuous_events) + tuple(sys.discrete_events):
        for a in ev.affects:
            if a.lhs in params:
                found.add(a.lhs)
    return found


def _timeseries_observed(sys, discrete: set) -> dict:
    """Which observed LHS depend, directly or through other observed equations, on time series."""
    timeseries_roots = set(sys.unknowns) | discrete
    result = {}
    for e in sys.observed:
        deps = collect_vars(e.rhs, None)
        result[e.lhs] = any(
            v in timeseries_roots
            or result.get(v, False)
            or (sys.iv is not None and v == sys.iv)
            or (sys.iv is not None and isinstance(v, AppliedUndef) and v.has(sys.iv))
            for v in deps
        )
    return result


def build_index_cache(sys) -> IndexCache:
    from dynsys.system.transforms import flatten

    flat = flatten(sys)
    discrete = discrete_parameters(flat)
    scalars = expand_parameters(flat.parameters)
    if flat.split:
        tunable = tuple(p for p in scalars if p not in discrete)
        varying = tuple(p for p in scalars if p in discrete)
        blocks = (tunable, varying)
        names = ("tunable", "discrete")
    else:
        blocks = (tuple(scalars),)
        names = ("p",)
    parameter_index = {}
    for b, block in enumerate(blocks):
        for i, p in enumerate(block):
            parameter_index[p] = (b, i)
    return IndexCache(
        unknown_index={u: i for i, u in enumerate(flat.unknowns)},
        parameter_blocks=blocks,
        block_names=names,
        parameter_index=parameter_index,
        observed_timeseries=_timeseries_observed(flat, discrete),
    )


# =============================================================================
# Helpers
# =============================================================================


def todict(d) -> dict:
    """Accept a mapping or a sequence of pairs."""
    if d is None:
        return {}
    if isinstance(d, dict):
        return dict(d)
    try:
        return dict(d)
    except (TypeError, ValueError) as e:
        raise ArgumentError(f"{d!r} must be a dictionary or a sequence of (key, value) pairs") from e


def _eq_unordered(a, b) -> bool:
    return len(a) == len(b) and Counter(a) == Counter(b)


def namespace_variable(var, prefix: str):
    """``var`` renamed to ``prefix.name``; global-scope variables are returned unchanged."""
    if is_global(var):
        return var
    base = var.base if isinstance(var, sp.Indexed) else var
    return rename(var, f"{prefix}{config.NAMESPACE_SEPARATOR}{getname(base)}")


_setattr = object.__setattr__


# =============================================================================
# Base system
# =============================================================================


@dataclass(frozen=True, eq=False, repr=False)
class AbstractSystem:
    """
    Base class of all systems.

    Construct systems through ``create`` (keyword constructor) or
    ``from_equations`` (infers the classification); calling the class directly
    expects already-classified content.
    """

    formalism = Formalism.CONTINUOUS
    operator = sp.Derivative

    equations: tuple = ()
    iv: Any = None
    unknowns: tuple = ()
    parameters: tuple = ()
    name: str = ""
    observed: tuple = ()
    controls: tuple = ()
    systems: tuple = ()
    defaults: dict = field(default_factory=dict)
    guesses: dict = field(default_factory=dict)
    tspan: Optional[tuple] = None
    parameter_dependencies: tuple = ()
    continuous_events: tuple = ()
    discrete_events: tuple = ()
    assertions: dict = field(default_factory=dict)
    initialization_equations: tuple = ()
    constraints: tuple = ()
    tstops: tuple = ()
    is_dde: bool = False
    description: str = ""
    metadata: Any = None
    torn_matching: Any = None  # Stored for downstream consumers, never computed here
    discrete_subsystems: Any = None
    is_complete: bool = False
    split: bool = False
    parent: Any = None  # Pre-simplification system, for display only
    context: Optional[ConstructionContext] = None
    tag: Optional[SystemTag] = None
    index_cache: Optional[IndexCache] = None
    kinds: dict = field(default_factory=dict)
    cache: SystemCache = field(default_factory=SystemCache)
    checks: InitVar[Any] = None

    def __post_init__(self, checks):
        _setattr(self, "equations", as_equations(self.equations))
        _setattr(self, "observed", as_equations(self.observed))
        _setattr(self, "parameter_dependencies", as_equations(self.parameter_dependencies))
        _setattr(self, "initialization_equations", as_equations(self.initialization_equations))
        _setattr(self, "constraints", as_equations(self.constraints))
        _setattr(self, "continuous_events", as_continuous_events(self.continuous_events))
        _setattr(self, "discrete_events", as_discrete_events(self.discrete_events))
        for name in ("unknowns", "parameters", "controls", "systems", "tstops"):
            _setattr(self, name, tuple(getattr(self, name)))
        _setattr(self, "defaults", todict(self.defaults))
        _setattr(self, "guesses", todict(self.guesses))
        _setattr(self, "assertions", todict(self.assertions))
        if self.context is None:
            _setattr(self, "context", DEFAULT_CONTEXT)

        checks = normalize_checks(config.DEFAULT_CHECKS if checks is None else checks)
        check_unique_names(self.systems)
        if wants(checks, CheckFlags.COMPONENTS):
            self._check_components()
        if wants(checks, CheckFlags.UNITS):
            check_units(self.equations + self.observed, self.iv)

        if not self.kinds:
            consts = collect_constants(self.equations + self.observed)
            _setattr(self, "kinds", variable_kinds(self.unknowns, self.parameters, self.controls, consts))
        if self.tag is None:
            _setattr(self, "tag", self.context.new_tag())
        if self.is_complete and self.index_cache is None:
            _setattr(self, "index_cache", build_index_cache(self))

    def _check_components(self):
        """Formalism-specific structural checks."""

    # -------------------------------------------------------------------------
    # Keyword constructor
    # -------------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        eqs,
        iv,
        unknowns,
        parameters,
        *,
        name: Optional[str] = None,
        observed=(),
        controls=(),
        systems=(),
        defaults=None,
        guesses=None,
        tspan=None,
        parameter_dependencies=(),
        continuous_events=(),
        discrete_events=(),
        assertions=None,
        initialization_equations=(),
        tstops=(),
        constraints=(),
        description: str = "",
        metadata=None,
        checks=None,
        context: Optional[ConstructionContext] = None,
        parent=None,
        default_u0=None,
        default_p=None,
    ):
        """
        Build a system from classified unknowns and parameters.

        Defaults and guesses attached to variables at declaration are collected;
        explicitly passed ``defaults``/``guesses`` take precedence and ``None``
        values are dropped. Delayed applications ``x(t - tau)`` are removed from
        the unknowns.

        Raises
        ------
        ArgumentError
            If ``name`` is missing, a control is not a parameter, sibling names clash,
            or a constraint reads something other than parameters and unknowns
            evaluated at a point.
        """
        if not name:
            raise ArgumentError("A system requires a `name` keyword argument.")
        eqs = as_equations(eqs)
        unknowns = tuple(v for v in unknowns if not is_delay(v, iv))
        parameters = tuple(dict.fromkeys(parameters))
        controls = tuple(controls)
        missing = [c for c in controls if c not in parameters]
        if missing:
            raise ArgumentError(f"Controls must be parameters of the system: {missing} are not.")

        constraints = as_equations(constraints)
        extra = check_constraints(constraints, unknowns, iv)
        parameters = tuple(dict.fromkeys(parameters + extra))

        deps, parameters = process_parameter_dependencies(parameter_dependencies, parameters)

        defaults = todict(defaults)
        if default_u0 is not None or default_p is not None:
            warnings.warn(
                "`default_u0` and `default_p` are deprecated. Use `defaults` instead.",
                DeprecationWarning,
                stacklevel=2,
            )
            for extra in (default_u0, default_p):
                for k, v in todict(extra).items():
                    defaults.setdefault(k, v)
        merged = {}
        for v in unknowns + parameters:
            d = getdefault(v)
            if d is not None:
                merged[v] = d
        for d in deps:
            merged[d.lhs] = d.rhs
        merged.update(defaults)
        defaults = {k: v for k, v in merged.items() if v is not None}

        merged_guesses = {v: getguess(v) for v in unknowns if getguess(v) is not None}
        merged_guesses.update(todict(guesses))

        is_dde = any(is_delay(v, iv) for e in eqs for v in collect_vars(e.rhs, None)) or any(
            s.is_dde for s in systems
        )

        return cls(
            equations=eqs,
            iv=iv,
            unknowns=unknowns,
            parameters=parameters,
            name=name,
            observed=observed,
            controls=controls,
            systems=tuple(systems),
            defaults=defaults,
            guesses={k: v for k, v in merged_guesses.items() if v is not None},
            tspan=tuple(tspan) if tspan is not None else None,
            parameter_dependencies=deps,
            continuous_events=continuous_events,
            discrete_events=discrete_events,
            assertions=assertions or {},
            initialization_equations=initialization_equations,
            tstops=tstops,
            constraints=constraints,
            is_dde=is_dde,
            description=description,
            metadata=metadata,
            parent=parent,
            context=context,
            checks=checks,
        )

    @classmethod
    def from_equations(cls, eqs, iv=None, *, unknowns=(), parameters=(), **kwargs):
        """
        Classify the variables of ``eqs`` and build the system.

        The independent variable is inferred from the operators when not given.
        Variables of parameter dependencies and events are classified too;
        ``unknowns``/``parameters`` add variables that do not appear in ``eqs``.
        """
        eqs = as_equations(eqs)
        if iv is None:
            iv = infer_independent_variable(eqs)
        extra = []
        for d in as_equations(kwargs.get("parameter_dependencies", ())):
            extra += [d.lhs, d.rhs]
        events = as_continuous_events(kwargs.get("continuous_events", ())) + as_discrete_events(
            kwargs.get("discrete_events", ())
        )
        for ev in events:
            for e in ev.equations:
                extra += [e.lhs, e.rhs]
        cl = classify_equations(eqs, iv, cls.operator, extra_exprs=extra)
        unknowns = tuple(dict.fromkeys(cl.unknowns + tuple(unknowns)))
        parameters = tuple(dict.fromkeys(cl.parameters + tuple(parameters)))
        return cls.create(eqs, iv, unknowns, parameters, **kwargs)

    # -------------------------------------------------------------------------
    # Equality
    # -------------------------------------------------------------------------

    def __eq__(self, other):
        if self is other:
            return True
        if not isinstance(other, AbstractSystem) or type(self) is not type(other):
            return False
        if self.tag == other.tag:
            return True
        return (
            self.iv == other.iv
            and self.name == other.name
            and _eq_unordered(self.equations, other.equations)
            and _eq_unordered(self.unknowns, other.unknowns)
            and _eq_unordered(self.parameters, other.parameters)
            and _eq_unordered(self.continuous_events, other.continuous_events)
            and _eq_unordered(self.discrete_events, other.discrete_events)
            and _eq_unordered(self.constraints, other.constraints)
            and len(self.systems) == len(other.systems)
            and all(a == b for a, b in zip(self.systems, other.systems))
        )

    def __hash__(self):
        return hash((type(self).__name__, self.name, self.iv))

    # -------------------------------------------------------------------------
    # Namespacing
    # -------------------------------------------------------------------------

    def _members(self):
        yield from self.unknowns
        yield from self.parameters
        yield from (d.lhs for d in self.parameter_dependencies)
        yield from (e.lhs for e in self.observed)

    def var(self, name: str):
        """
        Member or child system called ``name``.

        Until the system is complete the result is namespaced with this system's
        name (``sys.x`` is the variable ``sys.x``); completed systems return their
        members as they are.
        """
        sep = config.NAMESPACE_SEPARATOR
        for child in self.systems:
            if child.name == name:
                if self.is_complete:
                    return child
                return rebuild(child, name=f"{self.name}{sep}{child.name}")
        for v in self._members():
            base = v.base if isinstance(v, sp.Indexed) else v
            if getname(base) == name:
                if self.is_complete:
                    return v
                return namespace_variable(v, self.name)
        raise ResolutionError(f"System '{self.name}' has no variable or subsystem named '{name}'")

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self.var(name)
        except ResolutionError:
            raise AttributeError(f"{type(self).__name__} '{self.name}' has no member '{name}'") from None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def kind_of(self, var) -> Optional[VariableKind]:
        return self.kinds.get(var)

    @property
    def constants(self) -> tuple:
        return tuple(v for v, k in self.kinds.items() if k is VariableKind.CONSTANT)

    @property
    def dependent_parameters(self) -> tuple:
        return tuple(d.lhs for d in self.parameter_dependencies)

    @property
    def is_time_dependent(self) -> bool:
        return self.iv is not None

    def __repr__(self):
        return (
            f"{type(self).__name__}(name={self.name!r}, equations={len(self.equations)}, "
            f"unknowns={len(self.unknowns)}, parameters={len(self.parameters)}, "
            f"systems={len(self.systems)}, complete={self.is_complete})"
        )

    def __str__(self):
        lines = [f"{type(self).__name__} '{self.name}'"]
        if self.iv is not None:
            lines.append(f"  independent variable: {self.iv}")
        lines.append(f"  unknowns ({len(self.unknowns)}): {', '.join(map(str, self.unknowns))}")
        lines.append(f"  parameters ({len(self.parameters)}): {', '.join(map(str, self.parameters))}")
        lines.append(f"  equations ({len(self.equations)}):")
        for e in self.equations:
            lines.append(f"    {e}")
        if self.observed:
            lines.append(f"  observed ({len(self.observed)}):")
            for e in self.observed:
                lines.append(f"    {e}")
        if self.constraints:
            lines.append(f"  constraints ({len(self.constraints)}):")
            for e in self.constraints:
                lines.append(f"    {e}")
        if self.systems:
            lines.append(f"  subsystems: {', '.join(s.name for s in self.systems)}")
        return "\n".join(lines)


def rebuild(sys: AbstractSystem, **changes) -> AbstractSystem:
    """
    Copy of ``sys`` with ``changes`` applied.

    The copy gets a fresh tag and empty caches. Construction checks are skipped
    unless ``checks`` is passed.
    """
    changes.setdefault("checks", False)
    changes.setdefault("index_cache", None)
    changes.setdefault("kinds", {})
    return dataclasses.replace(sys, tag=None, cache=SystemCache(), **changes)


def complete(sys: AbstractSystem, split: bool = False) -> AbstractSystem:
    """
    Completed copy of ``sys``.

    Completion suppresses the namespace prefix on direct member access and
    computes the index cache; it never changes the structural content. With
    ``split=True`` parameters are stored as a tunable and a discrete
    (time-varying) block.
    """
    if sys.is_complete and sys.split == split:
        return sys
    return dataclasses.replace(sys, is_complete=True, split=split, index_cache=None, checks=False)


def substitute_system(sys: AbstractSystem, mapping: dict, **changes) -> AbstractSystem:
    """Rebuild ``sys`` with ``mapping`` substituted into its equations, constraints, events and defaults."""
    return rebuild(
        sys,
        equations=tuple(e.subs(mapping) for e in sys.equations),
        observed=tuple(e.subs(mapping) for e in sys.observed),
        constraints=tuple(e.subs(mapping) for e in sys.constraints),
        continuous_events=tuple(ev.subs(mapping) for ev in sys.continuous_events),
        discrete_events=tuple(ev.subs(mapping) for ev in sys.discrete_events),
        defaults={substitute(k, mapping): _subs_value(v, mapping) for k, v in sys.defaults.items()},
        **changes,
    )


def _subs_value(value, mapping):
    return substitute(value, mapping) if isinstance(value, sp.Basic) else value


def all_variables(sys: AbstractSystem) -> dict:
    """Every variable of ``sys`` (own content only), in order of appearance."""
    found = dict.fromkeys(sys.unknowns)
    found.update(dict.fromkeys(sys.parameters))
    found.update(dict.fromkeys(sys.controls))
    eqs = (
        sys.equations
        + sys.observed
        + sys.parameter_dependencies
        + sys.initialization_equations
        + sys.constraints
        + tuple(e for ev in sys.continuous_events + sys.discrete_events for e in ev.equations)
    )
    for e in eqs:
        collect_vars(e.lhs, None, found)
        collect_vars(e.rhs, None, found)
    for ev in sys.discrete_events:
        collect_vars(ev.condition, None, found)
    for k, v in list(sys.defaults.items()) + list(sys.guesses.items()):
        collect_vars(k, None, found)
        if isinstance(v, sp.Basic):
            collect_vars(v, None, found)
    for cond in sys.assertions:
        collect_vars(cond, None, found)
    found.pop(sys.iv, None)
    return found
