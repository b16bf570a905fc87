"""typeprof type lattice.

Two layers live here:

1. NOMINAL TYPES: ``DataType`` values form a single-inheritance tree rooted
   at ``Any``. A parametric type such as ``Vector`` may be instantiated
   (``Vector{Int64}``); instantiated parameters are invariant, and the bare
   parametric type stands for every instantiation:

     Vector{Int64} <: Vector          Vector{Int64} </: Vector{Integer}

   ``TypeVar`` values only appear inside method signatures.

2. THE ABSTRACT DOMAIN: an ``AbstractType`` is a set of possible types:

           Top
          / | \\
       Union{A, B, ...}     (flattened, deduplicated, subsumption-free)
          \\ | /
        Concrete(T)
            |
          Bottom

   Union construction always normalises, so every set of types has exactly
   one representation and ``is_subtype`` is antisymmetric on it.

Lattice operations: ``join`` (least upper bound), ``meet`` (greatest lower
bound), ``is_subtype`` (partial order), ``is_bottom`` and ``widen``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional


# ---------------------------------------------------------------------------
# Nominal types
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class DataType:
    """A named type, optionally instantiated with type parameters.

    Identity is the name plus the parameters; the supertype, declared
    fields and flags are descriptive and ignored by ``==``.
    """
    name: str
    params: tuple = ()
    supertype: Optional[DataType] = field(default=None, repr=False)
    fields: dict[str, DataType] = field(default_factory=dict, repr=False)
    abstract: bool = False
    arity: int = 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DataType):
            return NotImplemented
        return self.name == other.name and self.params == other.params

    def __hash__(self) -> int:
        return hash((self.name, self.params))

    def __str__(self) -> str:
        if self.params:
            return f"{self.name}{{{', '.join(str(p) for p in self.params)}}}"
        return self.name

    @property
    def is_bare(self) -> bool:
        """A parametric type written without parameters (``Vector``)."""
        return self.arity > 0 and not self.params

    @property
    def is_concrete(self) -> bool:
        return not self.abstract and not self.is_bare

    def instantiate(self, params: tuple) -> DataType:
        if len(params) != self.arity:
            raise ValueError(f"{self.name} expects {self.arity} parameter(s), got {len(params)}")
        return DataType(
            name=self.name,
            params=tuple(params),
            supertype=self.supertype,
            fields=self.fields,
            abstract=self.abstract,
            arity=self.arity,
        )

    def bare(self) -> DataType:
        if not self.params:
            return self
        return DataType(
            name=self.name,
            supertype=self.supertype,
            fields=self.fields,
            abstract=self.abstract,
            arity=self.arity,
        )

    def depth(self) -> int:
        """Nesting depth of type parameters (``Int64`` is 0, ``Vector{Int64}`` is 1)."""
        inner = [p.depth() for p in self.params if isinstance(p, DataType)]
        return 1 + max(inner) if self.params else 0

    def ancestors(self) -> Iterator[DataType]:
        """This type, its bare form if instantiated, then every supertype up to Any."""
        yield self
        if self.params:
            yield self.bare()
        t = self.supertype
        while t is not None:
            yield t
            t = t.supertype


@dataclass(frozen=True)
class TypeVar:
    """A signature-level type parameter: ``T`` in ``f(x::T) where T<:Number``."""
    name: str
    bound: Optional[DataType] = None

    def __str__(self) -> str:
        return self.name

    def upper(self) -> DataType:
        return self.bound if self.bound is not None else ANY


ANY = DataType("Any", abstract=True)


def issubtype(a: DataType, b: DataType) -> bool:
    """Nominal subtyping between two type-variable-free data types."""
    if b.name == "Any":
        return True
    for t in a.ancestors():
        if t.name == b.name:
            if not b.params:
                return True
            if t.params == b.params:
                return True
    return False


def common_supertype(types: Iterable[DataType]) -> DataType:
    """The nearest type that every one of ``types`` is a subtype of."""
    result: Optional[DataType] = None
    for t in types:
        if result is None:
            result = t
            continue
        if issubtype(t, result):
            continue
        for anc in result.ancestors():
            if issubtype(t, anc):
                result = anc
                break
        else:
            result = ANY
    return result if result is not None else ANY


def has_typevars(pattern) -> bool:
    if isinstance(pattern, TypeVar):
        return True
    return any(has_typevars(p) for p in pattern.params)


def pattern_upper(pattern) -> DataType:
    """Coarsest data type a signature pattern can accept."""
    if isinstance(pattern, TypeVar):
        return pattern.upper()
    if has_typevars(pattern):
        return pattern.bare()
    return pattern


# ---------------------------------------------------------------------------
# Abstract domain
# ---------------------------------------------------------------------------

class AbstractType:
    """An element of the abstract type domain."""

    def members(self) -> tuple[DataType, ...]:
        return ()

    def is_bottom(self) -> bool:
        return False

    def is_top(self) -> bool:
        return False

    def annotation(self) -> str:
        """Signature-style rendering: ``::Int64``."""
        return f"::{self}"


@dataclass(frozen=True)
class BottomType(AbstractType):
    def is_bottom(self) -> bool:
        return True

    def __str__(self) -> str:
        return "Union{}"


@dataclass(frozen=True)
class TopType(AbstractType):
    def is_top(self) -> bool:
        return True

    def __str__(self) -> str:
        return "Any"


@dataclass(frozen=True)
class Concrete(AbstractType):
    type: DataType

    def members(self) -> tuple[DataType, ...]:
        return (self.type,)

    def __str__(self) -> str:
        return str(self.type)


@dataclass(frozen=True)
class TypeUnion(AbstractType):
    """``Union{T1, ..., Tn}``; only ever built through ``make_union``."""
    types: tuple[DataType, ...]

    def members(self) -> tuple[DataType, ...]:
        return self.types

    def __str__(self) -> str:
        return f"Union{{{', '.join(str(t) for t in self.types)}}}"


BOTTOM = BottomType()
TOP = TopType()


def make_union(types: Iterable[DataType]) -> AbstractType:
    """Normalising constructor for every non-trivial abstract type."""
    unique: list[DataType] = []
    for t in types:
        if t.name == "Any":
            return TOP
        if t not in unique:
            unique.append(t)
    kept = [
        t for t in unique
        if not any(o != t and issubtype(t, o) for o in unique)
    ]
    if not kept:
        return BOTTOM
    if len(kept) == 1:
        return Concrete(kept[0])
    return TypeUnion(tuple(sorted(kept, key=str)))


def concrete(t: DataType) -> AbstractType:
    return make_union((t,))


def is_bottom(a: AbstractType) -> bool:
    return a.is_bottom()


def join(a: AbstractType, b: AbstractType) -> AbstractType:
    if a.is_bottom():
        return b
    if b.is_bottom():
        return a
    if a.is_top() or b.is_top():
        return TOP
    return make_union(a.members() + b.members())


def join_all(types: Iterable[AbstractType]) -> AbstractType:
    result: AbstractType = BOTTOM
    for t in types:
        result = join(result, t)
    return result


def meet(a: AbstractType, b: AbstractType) -> AbstractType:
    if a.is_top():
        return b
    if b.is_top():
        return a
    if a.is_bottom() or b.is_bottom():
        return BOTTOM
    out: list[DataType] = []
    for x in a.members():
        for y in b.members():
            if issubtype(x, y):
                out.append(x)
            elif issubtype(y, x):
                out.append(y)
    return make_union(out)


def is_subtype(a: AbstractType, b: AbstractType) -> bool:
    if a.is_bottom() or b.is_top():
        return True
    if a.is_top() or b.is_bottom():
        return False
    return all(any(issubtype(x, y) for y in b.members()) for x in a.members())


def widen(a: AbstractType, max_union_size: int = 4, max_depth: int = 3) -> AbstractType:
    """Map ``a`` to a coarser representative drawn from a finite set.

    Members nested deeper than ``max_depth`` lose their parameters and a
    union wider than ``max_union_size`` collapses to its members' nearest
    common supertype. The result is always a supertype of ``a``.
    """
    if a.is_bottom() or a.is_top():
        return a
    members = [m.bare() if m.depth() > max_depth else m for m in a.members()]
    widened = make_union(members)
    if len(widened.members()) > max_union_size:
        return concrete(common_supertype(widened.members()))
    return widened


def split(a: AbstractType) -> list[AbstractType]:
    """The union members of ``a`` as separate abstract types."""
    if a.is_bottom():
        return []
    if a.is_top():
        return [TOP]
    return [Concrete(m) for m in a.members()]


# ---------------------------------------------------------------------------
# Named type registry
# ---------------------------------------------------------------------------

class TypeRegistry:
    """Scope of type names visible to a program: builtins plus user declarations."""

    def __init__(self) -> None:
        self._types: dict[str, DataType] = {}

    def define(self, t: DataType) -> DataType:
        self._types[t.name] = t
        return t

    def lookup(self, name: str) -> Optional[DataType]:
        return self._types.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._types

    def parse(self, text: str, typevars: Optional[dict[str, TypeVar]] = None):
        """Resolve a type expression such as ``Vector{T}`` or ``Union{Int64, String}``.

        Returns a ``DataType``/``TypeVar`` pattern, or an ``AbstractType`` for
        ``Union{...}`` expressions. Raises ``ValueError`` on unknown names.
        """
        parser = _TypeExprParser(text, self, typevars or {})
        return parser.parse()

    def parse_typevar(self, decl: str) -> TypeVar:
        """Resolve a ``where`` declaration: ``T`` or ``T<:Number``."""
        name, sep, bound = decl.replace(" ", "").partition("<:")
        if not name.isidentifier():
            raise ValueError(f"invalid type variable declaration {decl!r}")
        if not sep:
            return TypeVar(name)
        upper = self.parse(bound)
        if not isinstance(upper, DataType):
            raise ValueError(f"bound of {name} must be a data type, got {bound!r}")
        return TypeVar(name, upper)


class _TypeExprParser:
    def __init__(self, text: str, registry: TypeRegistry, typevars: dict[str, TypeVar]):
        self.text = text.replace(" ", "")
        self.pos = 0
        self.registry = registry
        self.typevars = typevars

    def parse(self):
        if not self.text:
            raise ValueError("empty type expression")
        result = self._expr()
        if self.pos != len(self.text):
            raise ValueError(f"unexpected {self.text[self.pos:]!r} in type {self.text!r}")
        return result

    def _name(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and (self.text[self.pos].isalnum()
                                             or self.text[self.pos] in "_!."):
            self.pos += 1
        if start == self.pos:
            raise ValueError(f"expected a type name in {self.text!r}")
        return self.text[start:self.pos]

    def _args(self) -> list:
        args = []
        if self.pos < len(self.text) and self.text[self.pos] == "{":
            self.pos += 1
            if self.text[self.pos:self.pos + 1] == "}":
                self.pos += 1
                return args
            while True:
                args.append(self._expr())
                if self.text[self.pos:self.pos + 1] == ",":
                    self.pos += 1
                    continue
                if self.text[self.pos:self.pos + 1] == "}":
                    self.pos += 1
                    return args
                raise ValueError(f"unterminated parameter list in {self.text!r}")
        return args

    def _expr(self):
        name = self._name()
        args = self._args()
        if name == "Union":
            members = []
            for a in args:
                if isinstance(a, TypeVar):
                    raise ValueError("type variables are not allowed inside Union{...}")
                members.extend(a.members() if isinstance(a, AbstractType) else (a,))
            return make_union(members)
        if name in self.typevars:
            if args:
                raise ValueError(f"type variable {name} cannot take parameters")
            return self.typevars[name]
        base = self.registry.lookup(name)
        if base is None:
            raise ValueError(f"unknown type {name}")
        if not args:
            return base
        for a in args:
            if isinstance(a, AbstractType):
                raise ValueError(f"Union{{...}} is not allowed as a parameter of {name}")
        return base.instantiate(tuple(args))
