"""typeprof intermediate representation.

The front-end hands the engine method bodies already lowered to this small
expression tree. Every node carries the source location it came from;
``source()`` renders the node back to host-language text for reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from typeprof.errors import SourceLocation


INFIX_OPERATORS = frozenset({
    "+", "-", "*", "/", "%", "^", "÷",
    "<", "<=", ">", ">=", "==", "!=", "&", "|",
})


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass
class Expr:
    location: Optional[SourceLocation] = None

    def source(self) -> str:
        return "..."


@dataclass
class Literal(Expr):
    value: Any = None

    def source(self) -> str:
        if self.value is None:
            return "nothing"
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        if isinstance(self.value, str):
            return f'"{self.value}"'
        return repr(self.value)


@dataclass
class Name(Expr):
    name: str = ""

    def source(self) -> str:
        return self.name


@dataclass
class TypeLiteral(Expr):
    """A type used as a value, e.g. the first argument of ``convert``."""
    type_name: str = ""

    def source(self) -> str:
        return self.type_name


@dataclass
class Call(Expr):
    func: str = ""
    args: list[Expr] = field(default_factory=list)

    def source(self) -> str:
        if self.func in INFIX_OPERATORS and len(self.args) == 2:
            return f"{self.args[0].source()} {self.func} {self.args[1].source()}"
        if self.func in ("-", "!") and len(self.args) == 1:
            return f"{self.func}{self.args[0].source()}"
        return f"{self.func}({', '.join(a.source() for a in self.args)})"


@dataclass
class If(Expr):
    cond: Expr = field(default_factory=Expr)
    then: Expr = field(default_factory=Expr)
    orelse: Optional[Expr] = None

    def source(self) -> str:
        text = f"if {self.cond.source()} {self.then.source()}"
        if self.orelse is not None:
            text += f" else {self.orelse.source()}"
        return text + " end"


@dataclass
class Block(Expr):
    body: list[Expr] = field(default_factory=list)

    def source(self) -> str:
        return "; ".join(e.source() for e in self.body)


@dataclass
class Assign(Expr):
    target: str = ""
    value: Expr = field(default_factory=Expr)

    def source(self) -> str:
        return f"{self.target} = {self.value.source()}"


@dataclass
class GetField(Expr):
    obj: Expr = field(default_factory=Expr)
    field_name: str = ""

    def source(self) -> str:
        return f"{self.obj.source()}.{self.field_name}"


@dataclass
class Convert(Expr):
    type_name: str = ""
    value: Expr = field(default_factory=Expr)

    def source(self) -> str:
        return f"convert({self.type_name}, {self.value.source()})"


@dataclass
class Return(Expr):
    value: Optional[Expr] = None

    def source(self) -> str:
        return f"return {self.value.source()}" if self.value is not None else "return"


@dataclass
class While(Expr):
    cond: Expr = field(default_factory=Expr)
    body: Expr = field(default_factory=Expr)

    def source(self) -> str:
        return f"while {self.cond.source()} {self.body.source()} end"


@dataclass
class VectorLiteral(Expr):
    elements: list[Expr] = field(default_factory=list)

    def source(self) -> str:
        return f"[{', '.join(e.source() for e in self.elements)}]"


@dataclass
class Unsupported(Expr):
    """A construct the front-end could lower but the engine does not model."""
    construct: str = ""
    text: str = ""

    def source(self) -> str:
        return self.text or self.construct


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass
class Param:
    name: str
    type_expr: str = "Any"

    def __str__(self) -> str:
        return f"{self.name}::{self.type_expr}"


@dataclass
class MethodDef:
    name: str
    params: list[Param] = field(default_factory=list)
    where: list[str] = field(default_factory=list)
    vararg: Optional[Param] = None
    body: Expr = field(default_factory=Block)
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        params = [str(p) for p in self.params]
        if self.vararg is not None:
            params.append(f"{self.vararg}...")
        text = f"{self.name}({', '.join(params)})"
        if self.where:
            text += f" where {{{', '.join(self.where)}}}"
        return text


@dataclass
class StructDef:
    name: str
    supertype: str = "Any"
    fields: dict[str, str] = field(default_factory=dict)
    abstract: bool = False
    location: Optional[SourceLocation] = None


@dataclass
class Program:
    path: str = "<stdin>"
    types: list[StructDef] = field(default_factory=list)
    methods: list[MethodDef] = field(default_factory=list)
    globals: dict[str, Expr] = field(default_factory=dict)
    calls: list[Expr] = field(default_factory=list)
