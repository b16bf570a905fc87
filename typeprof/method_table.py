"""Generic functions and their method tables.

A ``GenericFunction`` owns an append-only, ordered set of
``MethodSignature``s. Methods are added while a program is being loaded;
``MethodTable.freeze()`` is called before analysis starts and any later
mutation is a ``MethodTableError``, as is a second method with an identical
signature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

from typeprof.errors import MethodTableError, SourceLocation
from typeprof.types import AbstractType, DataType, TypeVar, has_typevars


logger = logging.getLogger(__name__)

Pattern = Union[DataType, TypeVar]


@dataclass(frozen=True)
class BuiltinBody:
    """Body of a builtin method: its return type, possibly in terms of type variables."""
    returns: Any

    def __str__(self) -> str:
        return f"<builtin -> {self.returns}>"


@dataclass(eq=False)
class MethodSignature:
    name: str
    params: tuple = ()
    typevars: tuple[TypeVar, ...] = ()
    vararg: Optional[Pattern] = None
    body: Any = None
    location: Optional[SourceLocation] = None

    @property
    def is_builtin(self) -> bool:
        return isinstance(self.body, BuiltinBody)

    @property
    def nparams(self) -> int:
        return len(self.params)

    def accepts_arity(self, n: int) -> bool:
        if self.vararg is not None:
            return n >= len(self.params)
        return n == len(self.params)

    def pattern_at(self, i: int) -> Pattern:
        if i < len(self.params):
            return self.params[i]
        return self.vararg

    def identity(self) -> tuple:
        return (self.params, self.vararg, self.typevars)

    def __str__(self) -> str:
        parts = [f"::{p}" for p in self.params]
        if self.vararg is not None:
            parts.append(f"::{self.vararg}...")
        text = f"{self.name}({', '.join(parts)})"
        if self.typevars:
            decls = []
            for tv in self.typevars:
                decls.append(f"{tv.name}<:{tv.bound}" if tv.bound is not None else tv.name)
            text += f" where {{{', '.join(decls)}}}"
        return text


def validate_signature(sig: MethodSignature) -> None:
    """Reject signatures whose type variables are not declared."""
    declared = set(sig.typevars)
    patterns = list(sig.params) + ([sig.vararg] if sig.vararg is not None else [])
    for p in patterns:
        for tv in _typevars_in(p):
            if tv not in declared:
                raise MethodTableError(f"{sig}: type variable {tv} is not declared")


def _typevars_in(pattern) -> Iterator[TypeVar]:
    if isinstance(pattern, TypeVar):
        yield pattern
    elif isinstance(pattern, DataType) and has_typevars(pattern):
        for p in pattern.params:
            yield from _typevars_in(p)


class GenericFunction:
    """A named operation and its ordered method table."""

    def __init__(self, name: str):
        self.name = name
        self._methods: list[MethodSignature] = []
        self._frozen = False

    @property
    def methods(self) -> tuple[MethodSignature, ...]:
        return tuple(self._methods)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add(self, sig: MethodSignature) -> MethodSignature:
        if self._frozen:
            raise MethodTableError(f"cannot add {sig}: method table of {self.name} is frozen")
        if sig.name != self.name:
            raise MethodTableError(f"cannot add {sig} to generic function {self.name}")
        validate_signature(sig)
        for existing in self._methods:
            if existing.identity() == sig.identity():
                raise MethodTableError(f"duplicate method definition {sig}")
        self._methods.append(sig)
        return sig

    def freeze(self) -> None:
        self._frozen = True

    def __len__(self) -> int:
        return len(self._methods)

    def __iter__(self) -> Iterator[MethodSignature]:
        return iter(self._methods)

    def __repr__(self) -> str:
        return f"GenericFunction({self.name!r}, {len(self._methods)} methods)"


class MethodTable:
    """All generic functions visible to one profiling run."""

    def __init__(self) -> None:
        self._functions: dict[str, GenericFunction] = {}
        self._frozen = False

    def add(self, sig: MethodSignature) -> MethodSignature:
        if self._frozen:
            raise MethodTableError(f"cannot add {sig}: method table is frozen")
        gf = self._functions.get(sig.name)
        if gf is None:
            gf = self._functions[sig.name] = GenericFunction(sig.name)
        return gf.add(sig)

    def get(self, name: str) -> Optional[GenericFunction]:
        return self._functions.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[GenericFunction]:
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)

    def freeze(self) -> None:
        for gf in self._functions.values():
            gf.freeze()
        self._frozen = True
        logger.debug("method table frozen: %d generic functions, %d methods",
                     len(self._functions), sum(len(gf) for gf in self._functions.values()))

    @property
    def frozen(self) -> bool:
        return self._frozen


def signature_text(name: str, argtypes: tuple[AbstractType, ...]) -> str:
    """Call signature rendering: ``f(::Int64, ::String)``."""
    return f"{name}({', '.join(a.annotation() for a in argtypes)})"
