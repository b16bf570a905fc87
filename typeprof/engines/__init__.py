"""typeprof analysis engines."""

from typeprof.engines.abstract_interp import AbstractInterpreter, Scope

__all__ = ["AbstractInterpreter", "Scope"]
