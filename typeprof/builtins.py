"""Builtin types and the builtin method table.

Operators and conversions of the analysed language are not special forms:
they are generic functions whose methods carry a ``BuiltinBody`` giving the
return type, possibly in terms of the signature's type variables. The
table below is declarative; ``install_builtins`` parses it against a type
registry.
"""

from __future__ import annotations

from typing import Any

from typeprof.method_table import BuiltinBody, MethodSignature, MethodTable
from typeprof.types import ANY, DataType, TypeRegistry


# ---------------------------------------------------------------------------
# Builtin type hierarchy
# ---------------------------------------------------------------------------

NUMBER = DataType("Number", supertype=ANY, abstract=True)
REAL = DataType("Real", supertype=NUMBER, abstract=True)
INTEGER = DataType("Integer", supertype=REAL, abstract=True)
SIGNED = DataType("Signed", supertype=INTEGER, abstract=True)
INT64 = DataType("Int64", supertype=SIGNED)
BOOL = DataType("Bool", supertype=INTEGER)
ABSTRACT_FLOAT = DataType("AbstractFloat", supertype=REAL, abstract=True)
FLOAT64 = DataType("Float64", supertype=ABSTRACT_FLOAT)
ABSTRACT_STRING = DataType("AbstractString", supertype=ANY, abstract=True)
STRING = DataType("String", supertype=ABSTRACT_STRING)
CHAR = DataType("Char", supertype=ANY)
SYMBOL = DataType("Symbol", supertype=ANY)
NOTHING = DataType("Nothing", supertype=ANY)
VECTOR = DataType("Vector", supertype=ANY, arity=1)
TYPE = DataType("Type", supertype=ANY, arity=1)

BUILTIN_TYPES: tuple[DataType, ...] = (
    ANY, NUMBER, REAL, INTEGER, SIGNED, INT64, BOOL, ABSTRACT_FLOAT, FLOAT64,
    ABSTRACT_STRING, STRING, CHAR, SYMBOL, NOTHING, VECTOR, TYPE,
)


def builtin_registry() -> TypeRegistry:
    registry = TypeRegistry()
    for t in BUILTIN_TYPES:
        registry.define(t)
    return registry


def literal_type(value: Any) -> DataType:
    """Data type of a literal constant as the front-end reports it."""
    if value is None:
        return NOTHING
    if isinstance(value, bool):
        return BOOL
    if isinstance(value, int):
        return INT64
    if isinstance(value, float):
        return FLOAT64
    if isinstance(value, str):
        return STRING
    raise TypeError(f"no literal type for {value!r}")


def type_of_type(t: DataType) -> DataType:
    """``Type{T}``: the type of a type used as a value."""
    return TYPE.instantiate((t,))


# ---------------------------------------------------------------------------
# Builtin method table
# ---------------------------------------------------------------------------

# (name, parameter types, where-declarations, return type[, vararg type])
_ARITHMETIC = ("+", "-", "*")
_COMPARISON = ("<", "<=", ">", ">=")
_INTEGER_DIVISION = ("%", "÷", "div", "rem")

BUILTIN_METHODS: list[tuple] = []

for _op in _ARITHMETIC:
    BUILTIN_METHODS += [
        (_op, ["T", "T"], ["T<:Number"], "T"),
        (_op, ["Integer", "Integer"], [], "Int64"),
        (_op, ["Integer", "AbstractFloat"], [], "Float64"),
        (_op, ["AbstractFloat", "Integer"], [], "Float64"),
    ]

for _op in _COMPARISON:
    BUILTIN_METHODS += [
        (_op, ["Real", "Real"], [], "Bool"),
        (_op, ["AbstractString", "AbstractString"], [], "Bool"),
    ]

for _op in _INTEGER_DIVISION:
    BUILTIN_METHODS.append((_op, ["T", "T"], ["T<:Integer"], "T"))

BUILTIN_METHODS += [
    ("-", ["T"], ["T<:Number"], "T"),
    ("/", ["Real", "Real"], [], "Float64"),
    ("^", ["T", "Integer"], ["T<:Number"], "T"),
    ("*", ["AbstractString", "AbstractString"], [], "String"),
    ("==", ["Any", "Any"], [], "Bool"),
    ("!=", ["Any", "Any"], [], "Bool"),
    ("!", ["Bool"], [], "Bool"),
    ("&", ["Bool", "Bool"], [], "Bool"),
    ("|", ["Bool", "Bool"], [], "Bool"),
    ("abs", ["T"], ["T<:Real"], "T"),
    ("zero", ["Type{T}"], ["T<:Number"], "T"),
    ("one", ["Type{T}"], ["T<:Number"], "T"),
    ("parse", ["Type{T}", "AbstractString"], ["T<:Real"], "T"),
    ("length", ["AbstractString"], [], "Int64"),
    ("length", ["Vector"], [], "Int64"),
    ("isempty", ["AbstractString"], [], "Bool"),
    ("isempty", ["Vector"], [], "Bool"),
    ("uppercase", ["AbstractString"], [], "String"),
    ("lowercase", ["AbstractString"], [], "String"),
    ("getindex", ["Vector{T}", "Integer"], ["T"], "T"),
    ("first", ["Vector{T}"], ["T"], "T"),
    ("last", ["Vector{T}"], ["T"], "T"),
    ("push!", ["Vector{T}", "T"], ["T"], "Vector{T}"),
    ("sum", ["Vector{T}"], ["T<:Number"], "T"),
    ("string", [], [], "String", "Any"),
    ("print", [], [], "Nothing", "Any"),
    ("println", [], [], "Nothing", "Any"),
    ("convert", ["Type{T}", "T"], ["T"], "T"),
    ("convert", ["Type{Int64}", "Integer"], [], "Int64"),
    ("convert", ["Type{Float64}", "Real"], [], "Float64"),
    ("convert", ["Type{String}", "AbstractString"], [], "String"),
]


def install_builtins(table: MethodTable, registry: TypeRegistry) -> MethodTable:
    for entry in BUILTIN_METHODS:
        name, params, where, returns = entry[:4]
        vararg = entry[4] if len(entry) > 4 else None
        typevars = tuple(registry.parse_typevar(d) for d in where)
        scope = {tv.name: tv for tv in typevars}
        table.add(MethodSignature(
            name=name,
            params=tuple(registry.parse(p, scope) for p in params),
            typevars=typevars,
            vararg=registry.parse(vararg, scope) if vararg else None,
            body=BuiltinBody(registry.parse(returns, scope)),
        ))
    return table


def builtin_table(registry: TypeRegistry) -> MethodTable:
    return install_builtins(MethodTable(), registry)
