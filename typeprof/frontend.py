"""IR document loader.

Reads a program already lowered to typeprof IR from a YAML or JSON
document::

    types:
      - {name: Point, fields: {x: Int64, y: Int64}}
    methods:
      - name: norm1
        params: ["p::Point"]
        line: 3
        body: {call: +, args: [{getfield: {name: p}, field: x},
                                {getfield: {name: p}, field: y}]}
    calls:
      - {call: norm1, args: [{call: Point, args: [{lit: 1}, {lit: 2}]}], line: 7}

Malformed documents raise ``FrontendError``; they are faults of the input,
never findings about the analysed program.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import yaml

from typeprof.builtins import builtin_registry, builtin_table
from typeprof.errors import FrontendError, SourceLocation
from typeprof.ir import (
    Assign, Block, Call, Convert, Expr, GetField, If, Literal, MethodDef, Name,
    Param, Program, Return, StructDef, TypeLiteral, Unsupported, VectorLiteral, While,
)
from typeprof.method_table import MethodSignature, MethodTable
from typeprof.types import DataType, TypeRegistry, TypeVar


logger = logging.getLogger(__name__)


def load_program(path: str) -> Program:
    """Read an IR document from ``path``."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise FrontendError(f"cannot read file: {e}", path) from e
    return parse_program(content, path)


def parse_program(content: str, path: str = "<stdin>") -> Program:
    try:
        if path.endswith(".json"):
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise FrontendError(f"cannot parse IR document: {e}", path) from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontendError("expected a mapping at the top level", path)
    return _ProgramReader(path).read(data)


class _ProgramReader:

    def __init__(self, path: str):
        self.path = path

    def fail(self, message: str) -> FrontendError:
        return FrontendError(message, self.path)

    def loc(self, node: dict, default: Optional[SourceLocation]) -> Optional[SourceLocation]:
        line = node.get("line")
        if line is None:
            return default
        if not isinstance(line, int):
            raise self.fail(f"line must be an integer, got {line!r}")
        return SourceLocation(line, node.get("column", 0), self.path)

    def read(self, data: dict) -> Program:
        program = Program(path=self.path)
        for entry in self._list(data, "types"):
            program.types.append(self.read_type(entry))
        for entry in self._list(data, "methods"):
            program.methods.append(self.read_method(entry))
        globals_ = data.get("globals") or {}
        if not isinstance(globals_, dict):
            raise self.fail("globals must be a mapping of name to expression")
        for name, expr in globals_.items():
            program.globals[str(name)] = self.read_expr(expr, None)
        for entry in self._list(data, "calls"):
            program.calls.append(self.read_expr(entry, None))
        logger.debug("loaded %s: %d types, %d methods, %d calls", self.path,
                     len(program.types), len(program.methods), len(program.calls))
        return program

    def _list(self, data: dict, key: str) -> list:
        value = data.get(key) or []
        if not isinstance(value, list):
            raise self.fail(f"{key} must be a list")
        return value

    # -- declarations -------------------------------------------------------

    def read_type(self, entry: Any) -> StructDef:
        if not isinstance(entry, dict) or "name" not in entry:
            raise self.fail(f"type declaration needs a name: {entry!r}")
        fields = entry.get("fields") or {}
        if not isinstance(fields, dict):
            raise self.fail(f"fields of {entry['name']} must be a mapping")
        return StructDef(
            name=str(entry["name"]),
            supertype=str(entry.get("supertype", "Any")),
            fields={str(k): str(v) for k, v in fields.items()},
            abstract=bool(entry.get("abstract", False)),
            location=self.loc(entry, None),
        )

    def read_param(self, entry: Any) -> Param:
        if isinstance(entry, dict):
            if "name" not in entry:
                raise self.fail(f"parameter needs a name: {entry!r}")
            return Param(str(entry["name"]), str(entry.get("type", "Any")))
        if isinstance(entry, str):
            name, sep, type_expr = entry.partition("::")
            return Param(name.strip(), type_expr.strip() if sep else "Any")
        raise self.fail(f"invalid parameter {entry!r}")

    def read_method(self, entry: Any) -> MethodDef:
        if not isinstance(entry, dict) or "name" not in entry:
            raise self.fail(f"method definition needs a name: {entry!r}")
        location = self.loc(entry, None)
        where = entry.get("where") or []
        if isinstance(where, str):
            where = [where]
        vararg = entry.get("vararg")
        return MethodDef(
            name=str(entry["name"]),
            params=[self.read_param(p) for p in entry.get("params") or []],
            where=[str(w) for w in where],
            vararg=self.read_param(vararg) if vararg is not None else None,
            body=self.read_expr(entry.get("body", {"block": []}), location),
            location=location,
        )

    # -- expressions --------------------------------------------------------

    def read_expr(self, node: Any, parent: Optional[SourceLocation]) -> Expr:
        if not isinstance(node, dict):
            # Scalars are literal constants.
            if isinstance(node, (bool, int, float, str)) or node is None:
                return Literal(location=parent, value=node)
            raise self.fail(f"invalid expression {node!r}")

        location = self.loc(node, parent)
        sub = lambda n: self.read_expr(n, location)  # noqa: E731

        if "lit" in node:
            value = node["lit"]
            if not isinstance(value, (bool, int, float, str)) and value is not None:
                raise self.fail(f"invalid literal {value!r}")
            return Literal(location=location, value=value)
        if "name" in node:
            return Name(location=location, name=str(node["name"]))
        if "type" in node:
            return TypeLiteral(location=location, type_name=str(node["type"]))
        if "call" in node:
            args = node.get("args") or []
            if not isinstance(args, list):
                raise self.fail(f"args of {node['call']} must be a list")
            return Call(location=location, func=str(node["call"]), args=[sub(a) for a in args])
        if "if" in node:
            orelse = node.get("else")
            return If(location=location, cond=sub(node["if"]), then=sub(node.get("then")),
                      orelse=sub(orelse) if orelse is not None else None)
        if "block" in node:
            body = node["block"] or []
            if not isinstance(body, list):
                raise self.fail("block must be a list of expressions")
            return Block(location=location, body=[sub(e) for e in body])
        if "assign" in node:
            return Assign(location=location, target=str(node["assign"]), value=sub(node.get("value")))
        if "getfield" in node:
            if "field" not in node:
                raise self.fail("getfield needs a field name")
            return GetField(location=location, obj=sub(node["getfield"]), field_name=str(node["field"]))
        if "convert" in node:
            return Convert(location=location, type_name=str(node["convert"]), value=sub(node.get("value")))
        if "return" in node:
            value = node["return"]
            return Return(location=location, value=sub(value) if value is not None else None)
        if "while" in node:
            return While(location=location, cond=sub(node["while"]), body=sub(node.get("body", {"block": []})))
        if "vector" in node:
            elements = node["vector"] or []
            if not isinstance(elements, list):
                raise self.fail("vector must be a list of expressions")
            return VectorLiteral(location=location, elements=[sub(e) for e in elements])

        keys = [k for k in node if k not in ("line", "column")]
        construct = str(keys[0]) if keys else "<empty>"
        text = node.get("text", "") if isinstance(node.get("text"), str) else ""
        return Unsupported(location=location, construct=construct, text=text)


# ---------------------------------------------------------------------------
# Program environment
# ---------------------------------------------------------------------------

def build_environment(program: Program) -> tuple[TypeRegistry, MethodTable]:
    """Type registry and frozen method table of ``program``."""
    registry = builtin_registry()
    path = program.path

    declared: list[tuple[StructDef, DataType]] = []
    for struct in program.types:
        if struct.name in registry:
            raise FrontendError(f"type {struct.name} is already defined", path)
        supertype = registry.lookup(struct.supertype)
        if supertype is None:
            raise FrontendError(f"unknown supertype {struct.supertype} of {struct.name}", path)
        if not supertype.abstract:
            raise FrontendError(f"cannot subtype concrete type {supertype} ({struct.name})", path)
        t = registry.define(DataType(struct.name, supertype=supertype, abstract=struct.abstract))
        declared.append((struct, t))

    # Fields are resolved once every name is known, so types may refer to each other.
    for struct, t in declared:
        if struct.abstract and struct.fields:
            raise FrontendError(f"abstract type {struct.name} cannot declare fields", path)
        for name, type_expr in struct.fields.items():
            field_type = _parse(registry, type_expr, {}, path)
            if not isinstance(field_type, DataType):
                raise FrontendError(f"field {name} of {struct.name} must have a data type, "
                                    f"got {type_expr}", path)
            t.fields[name] = field_type

    table = builtin_table(registry)
    for definition in program.methods:
        table.add(_signature(definition, registry, path))
    table.freeze()
    return registry, table


def _parse(registry: TypeRegistry, text: str, typevars: dict, path: str):
    try:
        return registry.parse(text, typevars)
    except ValueError as e:
        raise FrontendError(str(e), path) from e


def _signature(definition: MethodDef, registry: TypeRegistry, path: str) -> MethodSignature:
    try:
        typevars = tuple(registry.parse_typevar(w) for w in definition.where)
    except ValueError as e:
        raise FrontendError(f"{definition.name}: {e}", path) from e
    scope = {tv.name: tv for tv in typevars}
    params = []
    for p in definition.params:
        pattern = _parse(registry, p.type_expr, scope, path)
        if not isinstance(pattern, (DataType, TypeVar)):
            raise FrontendError(f"{definition.name}: Union parameter types are not supported "
                                f"({p})", path)
        params.append(pattern)
    vararg = None
    if definition.vararg is not None:
        vararg = _parse(registry, definition.vararg.type_expr, scope, path)
        if not isinstance(vararg, (DataType, TypeVar)):
            raise FrontendError(f"{definition.name}: Union vararg types are not supported "
                                f"({definition.vararg})", path)
    return MethodSignature(
        name=definition.name,
        params=tuple(params),
        typevars=typevars,
        vararg=vararg,
        body=definition,
        location=definition.location,
    )
