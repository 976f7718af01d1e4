"""
Global configuration for the dynsys package.

Settings here control the defaults used by system constructors, transforms and
the code generator.

Examples
--------
>>> import dynsys
>>> dynsys.config.CODEGEN_CSE = True
>>> dynsys.config.reset()

>>> with dynsys.temp_config(DEFAULT_CHECKS=dynsys.CheckFlags.NONE):
...     sys = ODESystem.create(eqs, t, name="fast")

Notes
-----
These settings affect package-wide behavior until changed again or reset.
"""

from contextlib import contextmanager
from dataclasses import dataclass

from dynsys.ir.types import CheckFlags


@dataclass
class DynsysConfig:
    """
    Global configuration for dynsys.

    Attributes
    ----------
    DEFAULT_CHECKS : CheckFlags
        Checks run by system constructors when ``checks`` is not given.
        Default: CheckFlags.ALL
    NAMESPACE_SEPARATOR : str
        Separator between a system name and a member name.
        Default: "."
    ACCUMULATION_PREFIX : str
        Name prefix of variables created by ``add_accumulations``.
        Default: "accumulation_"
    LAG_SUFFIX : str
        Name infix of lag unknowns synthesized by ``linearize_shifts``.
        Default: "_lag"
    CODEGEN_CSE : bool
        Run common subexpression elimination when generating functions.
        Default: False
    OBSERVED_THROW : bool
        Raise when an observed target references an unresolvable symbol.
        Default: True
    """

    DEFAULT_CHECKS: CheckFlags = CheckFlags.ALL
    NAMESPACE_SEPARATOR: str = "."
    ACCUMULATION_PREFIX: str = "accumulation_"
    LAG_SUFFIX: str = "_lag"
    CODEGEN_CSE: bool = False
    OBSERVED_THROW: bool = True

    def reset(self):
        """Reset all configuration values to package defaults."""
        defaults = DynsysConfig()
        for key in self.__dataclass_fields__:
            setattr(self, key, getattr(defaults, key))

    def __repr__(self):
        lines = ["DynsysConfig:"]
        for key in self.__dataclass_fields__:
            lines.append(f"  {key} = {getattr(self, key)!r}")
        return "\n".join(lines)


# Global configuration instance
config = DynsysConfig()


@contextmanager
def temp_config(**kwargs):
    """
    Context manager for temporarily modifying configuration values.

    Configuration is restored when the context exits, even if an exception occurs.

    Raises
    ------
    AttributeError
        If an invalid configuration attribute is specified.
    """
    old_values = {}
    for key, value in kwargs.items():
        if not hasattr(config, key):
            raise AttributeError(
                f"DynsysConfig has no attribute '{key}'. "
                f"Valid attributes: {list(config.__dataclass_fields__.keys())}"
            )
        old_values[key] = getattr(config, key)
        setattr(config, key, value)

    try:
        yield config
    finally:
        for key, value in old_values.items():
            setattr(config, key, value)
