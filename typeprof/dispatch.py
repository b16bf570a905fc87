"""Multiple-dispatch resolution over abstract argument types.

Given a generic function and a tuple of ``AbstractType`` arguments:

1. APPLICABILITY: a method applies when every parameter constraint has a
   non-bottom ``meet`` with the corresponding argument. Type variables are
   unified across positions:

     f(x::T, y::T) where T        T := meet(typeof(x), typeof(y))
     g(v::Vector{T}, x::T)        T := the element type of v (invariant),
                                  and typeof(x) must meet it

   Every position is narrowed again against the final bindings, so a type
   variable agrees everywhere it recurs.

2. SPECIFICITY: S1 is more specific than S2 when each of S1's constraints is
   a subtype of S2's (type variables compared through their upper bound)
   and not vice versa. The order is pluggable.

3. SELECTION: exactly one maximally specific applicable method is the
   result; several maximal methods are ``AMBIGUOUS``; none is
   ``NO_MATCH``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from typeprof.method_table import GenericFunction, MethodSignature
from typeprof.types import (
    AbstractType, DataType, TypeVar, BOTTOM,
    concrete, has_typevars, issubtype, join_all, make_union, meet, pattern_upper,
)


logger = logging.getLogger(__name__)

Specificity = Callable[[MethodSignature, MethodSignature], bool]


class DispatchStatus(Enum):
    OK = "ok"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class MethodMatch:
    """An applicable method with the argument types narrowed to its constraints."""
    method: MethodSignature
    argtypes: tuple[AbstractType, ...]
    bindings: tuple[tuple[TypeVar, AbstractType], ...] = ()

    def binding(self, tv: TypeVar) -> AbstractType:
        for var, value in self.bindings:
            if var == tv:
                return value
        return concrete(tv.upper())


@dataclass(frozen=True)
class DispatchResult:
    status: DispatchStatus
    match: Optional[MethodMatch] = None
    candidates: tuple[MethodSignature, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.status is DispatchStatus.OK


# ---------------------------------------------------------------------------
# Applicability
# ---------------------------------------------------------------------------

class _Bindings:
    """Type-variable assignments collected while matching one signature."""

    def __init__(self) -> None:
        self.values: dict[TypeVar, AbstractType] = {}
        self.exact: set[TypeVar] = set()

    def covariant(self, tv: TypeVar, arg: AbstractType) -> AbstractType:
        """``x::T``: narrow ``arg`` to T and T to ``arg``."""
        narrowed = meet(arg, concrete(tv.upper()))
        current = self.values.get(tv)
        if current is not None:
            narrowed = meet(narrowed, current)
        if narrowed.is_bottom():
            return BOTTOM
        if tv not in self.exact:
            self.values[tv] = narrowed
        return narrowed

    def invariant(self, tv: TypeVar, value: AbstractType) -> bool:
        """``Vector{T}``: T is exactly the element type."""
        if not all(issubtype(m, tv.upper()) for m in value.members()):
            return False
        current = self.values.get(tv)
        if tv in self.exact:
            return current == value
        if current is not None and meet(current, value).is_bottom():
            return False
        self.values[tv] = value
        self.exact.add(tv)
        return True

    def frozen(self) -> tuple[tuple[TypeVar, AbstractType], ...]:
        return tuple(sorted(self.values.items(), key=lambda kv: kv[0].name))


def _unify(pattern, member: DataType, found: dict[TypeVar, list[AbstractType]]) -> Optional[DataType]:
    """Match one data type against a pattern containing type variables."""
    if isinstance(pattern, TypeVar):
        if not issubtype(member, pattern.upper()):
            return None
        found.setdefault(pattern, []).append(concrete(member))
        return member
    if not has_typevars(pattern):
        if issubtype(member, pattern):
            return member
        if issubtype(pattern, member):
            return pattern
        return None
    instance = next((a for a in member.ancestors() if a.name == pattern.name), None)
    if instance is None or not instance.params:
        # The member is a supertype of the pattern or the bare parametric
        # type: its parameters are unknown.
        if instance is None and not issubtype(pattern.bare(), member):
            return None
        for p in pattern.params:
            if isinstance(p, TypeVar):
                found.setdefault(p, []).append(concrete(p.upper()))
        return pattern.bare() if instance is None else member
    for pp, ap in zip(pattern.params, instance.params):
        if isinstance(pp, TypeVar):
            if not issubtype(ap, pp.upper()):
                return None
            found.setdefault(pp, []).append(concrete(ap))
        elif has_typevars(pp):
            if _unify(pp, ap, found) != ap:
                return None
        elif pp != ap:
            return None
    return member


def _match_position(pattern, arg: AbstractType, bindings: _Bindings) -> AbstractType:
    if isinstance(pattern, TypeVar):
        return bindings.covariant(pattern, arg)
    if not has_typevars(pattern):
        return meet(arg, concrete(pattern))
    members = arg.members() if not arg.is_top() else (pattern.bare(),)
    found: dict[TypeVar, list[AbstractType]] = {}
    matched = []
    for m in members:
        r = _unify(pattern, m, found)
        if r is not None:
            matched.append(r)
    if not matched:
        return BOTTOM
    for tv, values in found.items():
        if not bindings.invariant(tv, join_all(values)):
            return BOTTOM
    return make_union(matched)


def match_method(sig: MethodSignature, argtypes: tuple[AbstractType, ...]) -> Optional[MethodMatch]:
    """Narrow ``argtypes`` to ``sig`` or return None when it does not apply."""
    if not sig.accepts_arity(len(argtypes)):
        return None
    bindings = _Bindings()
    narrowed: list[AbstractType] = []
    for i, arg in enumerate(argtypes):
        t = _match_position(sig.pattern_at(i), arg, bindings)
        if t.is_bottom():
            return None
        narrowed.append(t)
    if sig.typevars:
        for i, t in enumerate(narrowed):
            pattern = sig.pattern_at(i)
            if has_typevars(pattern):
                again = _match_position(pattern, t, bindings)
                if again.is_bottom():
                    return None
                narrowed[i] = again
    return MethodMatch(sig, tuple(narrowed), bindings.frozen())


# ---------------------------------------------------------------------------
# Specificity
# ---------------------------------------------------------------------------

def _signature_leq(s1: MethodSignature, s2: MethodSignature) -> bool:
    if s1.vararg is not None and s2.vararg is None:
        return False
    n = max(s1.nparams, s2.nparams)
    for i in range(n):
        p1, p2 = s1.pattern_at(i), s2.pattern_at(i)
        if p1 is None or p2 is None:
            return False
        if not issubtype(pattern_upper(p1), pattern_upper(p2)):
            return False
    if s1.vararg is not None and not issubtype(pattern_upper(s1.vararg), pattern_upper(s2.vararg)):
        return False
    return True


def more_specific(s1: MethodSignature, s2: MethodSignature) -> bool:
    """Default specificity order: strict positional subtyping of constraints."""
    return _signature_leq(s1, s2) and not _signature_leq(s2, s1)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class DispatchResolver:
    """Resolves calls against a frozen method table.

    Results are memoised per (function, argument types); the memo is shared
    by every root of a run and guarded by a lock.
    """

    def __init__(self, specificity: Specificity = more_specific):
        self.specificity = specificity
        self._memo: dict[tuple, DispatchResult] = {}
        self._lock = threading.Lock()

    def applicable(self, gf: GenericFunction, argtypes: tuple[AbstractType, ...]) -> list[MethodMatch]:
        out = []
        for sig in gf:
            m = match_method(sig, argtypes)
            if m is not None:
                out.append(m)
        return out

    def resolve(self, gf: GenericFunction, argtypes: tuple[AbstractType, ...]) -> DispatchResult:
        key = (gf.name, argtypes)
        with self._lock:
            cached = self._memo.get(key)
        if cached is not None:
            return cached
        result = self._resolve(gf, argtypes)
        with self._lock:
            self._memo.setdefault(key, result)
        return result

    def _resolve(self, gf: GenericFunction, argtypes: tuple[AbstractType, ...]) -> DispatchResult:
        matches = self.applicable(gf, argtypes)
        if not matches:
            logger.debug("no method of %s applies to %s", gf.name, argtypes)
            return DispatchResult(DispatchStatus.NO_MATCH)
        maximal = [
            a for a in matches
            if not any(b is not a and self.specificity(b.method, a.method) for b in matches)
        ]
        if len(maximal) == 1:
            logger.debug("dispatch %s%s -> %s", gf.name, argtypes, maximal[0].method)
            return DispatchResult(DispatchStatus.OK, maximal[0], (maximal[0].method,))
        return DispatchResult(
            DispatchStatus.AMBIGUOUS,
            candidates=tuple(m.method for m in maximal),
        )


def instantiate_return(pattern, match: MethodMatch) -> AbstractType:
    """Return type of a builtin method under the bindings of ``match``."""
    if isinstance(pattern, AbstractType):
        return pattern
    if isinstance(pattern, TypeVar):
        return match.binding(pattern)
    if not has_typevars(pattern):
        return concrete(pattern)
    params = []
    for p in pattern.params:
        value = instantiate_return(p, match)
        members = value.members()
        if len(members) != 1:
            return concrete(pattern.bare())
        params.append(members[0])
    return concrete(pattern.instantiate(tuple(params)))
