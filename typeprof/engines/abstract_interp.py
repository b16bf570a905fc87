"""typeprof Abstract Interpreter.

Executes IR method bodies over types instead of values. Every expression
is given an ``AbstractType``; calls are resolved through the dispatch
resolver and inferred by interpreting the selected method's body under the
narrowed argument types.

Key structures:

1. SCOPES: a method scope chained to the global scope, ordered pointwise
   like an abstract state (Var -> AbstractType). Conditionals join the
   scopes of both branches; loops iterate the scope to a fixed point.

2. CALLS: for a call f(a1, ..., an)
     - any Bottom argument makes the call Bottom (errors are infectious)
     - union-typed arguments are split into member combinations while
       there are at most ``max_union_splitting`` of them
     - each selected method is inferred once per narrowed argument tuple;
       completed inferences are cached for the run

3. RECURSION as a fixed point: a call whose key is already in progress
   returns that frame's running estimate (initially Bottom). The frame
   re-interprets its body until the estimate is stable:

     E_0 = Bottom
     E_{n+1} = E_n join F(E_n)           n <  widen_after
     E_{n+1} = widen(E_n join F(E_n))    n >= widen_after

   until F(E_n) <= E_n. ``max_fixpoint_iterations`` is a hard ceiling.
   Only the findings of the final iteration are kept.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
from typing import Optional

from typeprof.builtins import BOOL, NOTHING, VECTOR, literal_type, type_of_type
from typeprof.cache import CachedResult, CallKey, CallStack, InferenceCache
from typeprof.config import ProfilerConfig
from typeprof.detector import ErrorDetector
from typeprof.dispatch import (
    DispatchResolver, DispatchStatus, MethodMatch, instantiate_return, match_method,
)
from typeprof.errors import (
    ErrorEvent, SourceLocation,
    ambiguous_call, conversion_failure, invalid_field_access, iteration_limit,
    no_matching_method, undefined_binding, unsupported_construct,
)
from typeprof.frames import CallFrame
from typeprof.ir import (
    Assign, Block, Call, Convert, Expr, GetField, If, Literal, Name, Return,
    TypeLiteral, Unsupported, VectorLiteral, While,
)
from typeprof.method_table import GenericFunction, MethodTable, signature_text
from typeprof.types import (
    ANY, AbstractType, DataType, TypeRegistry, BOTTOM, TOP,
    common_supertype, concrete, is_subtype, join, join_all, meet, split, widen,
)


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------

class Scope:
    """Variable -> AbstractType bindings, chained to an enclosing scope.

    Assignment always binds in the innermost scope; lookup walks outwards.
    """

    def __init__(self, parent: Optional[Scope] = None,
                 bindings: Optional[dict[str, AbstractType]] = None):
        self.parent = parent
        self.vars: dict[str, AbstractType] = dict(bindings or {})

    def lookup(self, name: str) -> Optional[AbstractType]:
        if name in self.vars:
            return self.vars[name]
        if self.parent is not None:
            return self.parent.lookup(name)
        return None

    def assign(self, name: str, value: AbstractType) -> None:
        self.vars[name] = value

    def copy(self) -> Scope:
        return Scope(self.parent, self.vars)

    def join(self, other: Scope) -> Scope:
        result = Scope(self.parent)
        for v in set(self.vars) | set(other.vars):
            result.vars[v] = join(self.vars.get(v, BOTTOM), other.vars.get(v, BOTTOM))
        return result

    def widen(self, max_union_size: int, max_depth: int) -> Scope:
        return Scope(self.parent, {
            v: widen(t, max_union_size, max_depth) for v, t in self.vars.items()
        })

    def leq(self, other: Scope) -> bool:
        return all(is_subtype(t, other.vars.get(v, BOTTOM)) for v, t in self.vars.items())

    def replace(self, other: Scope) -> None:
        self.vars = dict(other.vars)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}::{v}" for k, v in sorted(self.vars.items()))
        return f"Scope({inner})"


class _Flow:
    """Return types collected while interpreting one method body."""

    def __init__(self) -> None:
        self.returns: AbstractType = BOTTOM
        self.terminated = False


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------

class AbstractInterpreter:
    """Type-level interpreter for one toplevel root.

    Each root owns its call stack, its detector and its frames; the
    inference cache and the dispatch resolver may be shared by every root
    of a run.
    """

    def __init__(
        self,
        table: MethodTable,
        registry: TypeRegistry,
        config: Optional[ProfilerConfig] = None,
        cache: Optional[InferenceCache] = None,
        resolver: Optional[DispatchResolver] = None,
        detector: Optional[ErrorDetector] = None,
        globals: Optional[dict[str, AbstractType]] = None,
    ):
        self.table = table
        self.registry = registry
        self.config = config or ProfilerConfig()
        self.cache = cache if cache is not None else InferenceCache()
        self.resolver = resolver if resolver is not None else DispatchResolver()
        self.detector = detector if detector is not None else ErrorDetector()
        self.stack = CallStack()
        self.global_scope = Scope(bindings=globals)
        self.frames: list[CallFrame] = []
        self.inferences = 0
        self._budget_reported = False
        self._flows: list[_Flow] = []

    # -- entry points -------------------------------------------------------

    def bind_globals(self, definitions: dict[str, Expr]) -> dict[str, AbstractType]:
        """Evaluate global initialisers in order; later ones may use earlier ones."""
        for name, expr in definitions.items():
            self.global_scope.assign(name, self._eval_toplevel(expr, self.global_scope))
        return dict(self.global_scope.vars)

    def infer_toplevel(self, expr: Expr) -> AbstractType:
        """Infer the type of one toplevel expression (normally a call)."""
        return self._eval_toplevel(expr, Scope(parent=self.global_scope))

    def _eval_toplevel(self, expr: Expr, scope: Scope) -> AbstractType:
        self._flows.append(_Flow())
        try:
            return self._eval(expr, scope)
        finally:
            self._flows.pop()

    # -- reporting ----------------------------------------------------------

    def _report(self, event: ErrorEvent) -> None:
        self.detector.report(event, self.stack)

    @property
    def _flow(self) -> _Flow:
        return self._flows[-1]

    # -- expressions --------------------------------------------------------

    def _eval(self, expr: Expr, scope: Scope) -> AbstractType:
        """Abstract transfer function for an expression."""
        if isinstance(expr, Literal):
            return self._eval_literal(expr)

        if isinstance(expr, Name):
            return self._eval_name(expr, scope)

        if isinstance(expr, TypeLiteral):
            return self._eval_type_literal(expr)

        if isinstance(expr, Call):
            return self._eval_call(expr, scope)

        if isinstance(expr, Block):
            return self._eval_block(expr, scope)

        if isinstance(expr, Assign):
            value = self._eval(expr.value, scope)
            scope.assign(expr.target, value)
            return value

        if isinstance(expr, If):
            return self._eval_if(expr, scope)

        if isinstance(expr, While):
            return self._eval_while(expr, scope)

        if isinstance(expr, Return):
            value = self._eval(expr.value, scope) if expr.value is not None else concrete(NOTHING)
            self._flow.returns = join(self._flow.returns, value)
            self._flow.terminated = True
            return BOTTOM

        if isinstance(expr, GetField):
            return self._eval_getfield(expr, scope)

        if isinstance(expr, Convert):
            return self._eval_convert(expr, scope)

        if isinstance(expr, VectorLiteral):
            return self._eval_vector(expr, scope)

        construct = expr.construct if isinstance(expr, Unsupported) else type(expr).__name__
        self._report(unsupported_construct(construct, expr.location, expr.source()))
        return BOTTOM

    def _eval_literal(self, expr: Literal) -> AbstractType:
        return concrete(literal_type(expr.value))

    def _eval_name(self, expr: Name, scope: Scope) -> AbstractType:
        value = scope.lookup(expr.name)
        if value is not None:
            return value
        t = self.registry.lookup(expr.name)
        if t is not None:
            return concrete(type_of_type(t))
        if expr.name in self.table:
            # Functions are not first-class values in this domain.
            return TOP
        self._report(undefined_binding(expr.name, expr.location, expr.source()))
        return BOTTOM

    def _eval_type_literal(self, expr: TypeLiteral) -> AbstractType:
        t = self._parse_type(expr.type_name)
        if t is None:
            self._report(undefined_binding(expr.type_name, expr.location, expr.source()))
            return BOTTOM
        return concrete(type_of_type(t))

    def _parse_type(self, text: str) -> Optional[DataType]:
        try:
            t = self.registry.parse(text)
        except ValueError:
            return None
        return t if isinstance(t, DataType) else None

    def _eval_block(self, expr: Block, scope: Scope) -> AbstractType:
        value: AbstractType = concrete(NOTHING)
        for stmt in expr.body:
            value = self._eval(stmt, scope)
            if self._flow.terminated:
                break
        return value

    def _eval_if(self, expr: If, scope: Scope) -> AbstractType:
        cond = self._eval(expr.cond, scope)
        if not self._check_condition(cond, expr.cond):
            return BOTTOM

        prune = None
        if not self.config.explore_both_branches and isinstance(expr.cond, Literal) \
                and isinstance(expr.cond.value, bool):
            prune = not expr.cond.value

        flow = self._flow
        branches = []
        for taken, body in ((True, expr.then), (False, expr.orelse)):
            if prune is taken:
                continue
            branch_scope = scope.copy()
            flow.terminated = False
            value = self._eval(body, branch_scope) if body is not None else concrete(NOTHING)
            branches.append((value, branch_scope, flow.terminated))

        live = [b for b in branches if not b[2]]
        flow.terminated = bool(branches) and not live
        if live:
            merged = live[0][1]
            for _, branch_scope, _ in live[1:]:
                merged = merged.join(branch_scope)
            scope.replace(merged)
        return join_all(value for value, _, _ in live)

    def _check_condition(self, cond: AbstractType, expr: Expr) -> bool:
        """False when the condition makes both branches unreachable."""
        if cond.is_bottom():
            return False
        if not cond.is_top() and meet(cond, concrete(BOOL)).is_bottom():
            self._report(conversion_failure(
                f"non-boolean ({cond}) used in boolean context",
                expr.location, expr.source(), source=str(cond), target="Bool",
            ))
            return False
        return True

    def _eval_while(self, expr: While, scope: Scope) -> AbstractType:
        """Iterate the loop body until the scope is stable.

          S_0 = scope
          S_{n+1} = S_n join body(S_n)      (widened after widen_after)
          until body(S_n) <= S_n
        """
        cfg = self.config
        flow = self._flow
        current = scope.copy()
        for i in range(1, cfg.max_fixpoint_iterations + 1):
            checkpoint = self.detector.checkpoint()
            entry = current.copy()
            cond = self._eval(expr.cond, entry)
            if not self._check_condition(cond, expr.cond):
                break
            self._eval(expr.body, entry)
            flow.terminated = False
            if entry.leq(current):
                break
            if i == cfg.max_fixpoint_iterations:
                self._report(iteration_limit("loop", cfg.max_fixpoint_iterations,
                                             expr.location, expr.source()))
                current = Scope(current.parent, {v: TOP for v in current.join(entry).vars})
                break
            current = current.join(entry)
            if i >= cfg.widen_after:
                current = current.widen(cfg.max_union_size, cfg.max_type_depth)
            logger.debug("loop at %s, iteration %d: %r", expr.location, i, current)
            self.detector.rollback(checkpoint)
        scope.replace(current)
        return concrete(NOTHING)

    def _eval_getfield(self, expr: GetField, scope: Scope) -> AbstractType:
        obj = self._eval(expr.obj, scope)
        if obj.is_bottom():
            return BOTTOM
        if obj.is_top():
            return TOP
        results = []
        for member in obj.members():
            if member.abstract or member.is_bare:
                results.append(TOP)
                continue
            field_type = member.fields.get(expr.field_name)
            if field_type is None:
                self._report(invalid_field_access(
                    str(member), expr.field_name, expr.location, expr.source()))
                return BOTTOM
            results.append(concrete(field_type))
        return join_all(results)

    def _eval_convert(self, expr: Convert, scope: Scope) -> AbstractType:
        value = self._eval(expr.value, scope)
        target = self._parse_type(expr.type_name)
        if target is None:
            self._report(undefined_binding(expr.type_name, expr.location, expr.source()))
            return BOTTOM
        if value.is_bottom():
            return BOTTOM
        return self._call_function("convert", (concrete(type_of_type(target)), value), expr)

    def _eval_vector(self, expr: VectorLiteral, scope: Scope) -> AbstractType:
        elements = [self._eval(e, scope) for e in expr.elements]
        if any(e.is_bottom() for e in elements):
            return BOTTOM
        element = join_all(elements)
        if element.is_bottom() or element.is_top():
            return concrete(VECTOR.instantiate((ANY,)))
        return concrete(VECTOR.instantiate((common_supertype(element.members()),)))

    # -- calls --------------------------------------------------------------

    def _eval_call(self, expr: Call, scope: Scope) -> AbstractType:
        # Every argument is evaluated so each raises its own findings.
        argtypes = tuple(self._eval(a, scope) for a in expr.args)

        if expr.func not in self.table and scope.lookup(expr.func) is None:
            t = self.registry.lookup(expr.func)
            if t is not None:
                if any(a.is_bottom() for a in argtypes):
                    return BOTTOM
                return self._construct(t, argtypes, expr)
            self._report(undefined_binding(expr.func, expr.location, expr.source()))
            return BOTTOM

        if any(a.is_bottom() for a in argtypes):
            return BOTTOM
        if expr.func not in self.table:
            # A local binding shadows the function name: not callable here.
            return TOP
        return self._call_function(expr.func, argtypes, expr)

    def _construct(self, t: DataType, argtypes: tuple[AbstractType, ...], expr: Call) -> AbstractType:
        """Implicit constructor of a composite type."""
        if not t.fields and len(argtypes) == 1 and t.is_concrete:
            return self._call_function("convert", (concrete(type_of_type(t)), argtypes[0]), expr)
        if not t.is_concrete or len(argtypes) != len(t.fields):
            self._report(no_matching_method(
                signature_text(t.name, argtypes), expr.location, expr.source()))
            return BOTTOM
        ok = True
        for arg, field_type in zip(argtypes, t.fields.values()):
            if is_subtype(arg, concrete(field_type)):
                continue
            converted = self._call_function(
                "convert", (concrete(type_of_type(field_type)), arg), expr)
            if converted.is_bottom():
                ok = False
        return concrete(t) if ok else BOTTOM

    def _split_args(self, argtypes: tuple[AbstractType, ...]) -> list[tuple[AbstractType, ...]]:
        parts = [split(a) for a in argtypes]
        count = 1
        for p in parts:
            count *= len(p)
        if 1 < count <= self.config.max_union_splitting:
            return [tuple(c) for c in itertools.product(*parts)]
        return [argtypes]

    def _call_function(self, name: str, argtypes: tuple[AbstractType, ...], expr: Expr) -> AbstractType:
        gf = self.table.get(name)
        if gf is None:
            self._report(undefined_binding(name, expr.location, expr.source()))
            return BOTTOM

        combos = self._split_args(argtypes)
        results: list[AbstractType] = []
        uncovered: list[tuple[AbstractType, ...]] = []
        for combo in combos:
            res = self.resolver.resolve(gf, combo)
            if res.ok:
                results.append(self._invoke(gf, res.match, expr))
            elif res.status is DispatchStatus.AMBIGUOUS:
                if any(a.is_top() for a in combo):
                    results.append(TOP)
                else:
                    self._report(ambiguous_call(
                        signature_text(name, combo),
                        [str(m) for m in res.candidates],
                        expr.location, expr.source(),
                    ))
            else:
                uncovered.append(combo)

        if uncovered:
            self._report_no_match(name, argtypes, uncovered, len(combos), expr)
        return join_all(results)

    def _report_no_match(self, name: str, argtypes: tuple[AbstractType, ...],
                         uncovered: list[tuple[AbstractType, ...]], total: int,
                         expr: Expr) -> None:
        if len(uncovered) == total:
            failing, split_info = argtypes, None
        else:
            failing = tuple(join_all(c[i] for c in uncovered) for i in range(len(argtypes)))
            split_info = (len(uncovered), total)

        if name == "convert" and len(failing) == 2 and failing[0].members() \
                and failing[0].members()[0].name == "Type":
            target = failing[0].members()[0].params[0]
            self._report(conversion_failure(
                f"cannot `convert` an object of type {failing[1]} to an object of type {target}",
                expr.location, expr.source(), source=str(failing[1]), target=str(target),
            ))
            return
        self._report(no_matching_method(
            signature_text(name, failing), expr.location, expr.source(), split=split_info))

    def _invoke(self, gf: GenericFunction, match: MethodMatch, expr: Expr) -> AbstractType:
        method = match.method
        if method.is_builtin:
            return instantiate_return(method.body.returns, match)

        argtypes = self._widen_recursive_args(match)
        frame = CallFrame(gf.name, argtypes, expr.location, method=method)
        key = CallKey.of(frame)

        cached = self.cache.get(key)
        if cached is not None:
            return self._reuse(frame, cached)

        in_progress = self.stack.find(key)
        if in_progress is not None:
            in_progress.enter_widening()
            self.stack.mark_provisional_above(in_progress)
            logger.debug("recursive call %s: estimate %s", frame.signature, in_progress.estimate)
            return in_progress.estimate

        self.inferences += 1
        if self.inferences > self.config.max_inferences:
            if not self._budget_reported:
                self._budget_reported = True
                self._report(iteration_limit(frame.signature, self.config.max_inferences,
                                             expr.location, expr.source()))
            return TOP

        return self._infer(frame, key)

    def _widen_recursive_args(self, match: MethodMatch) -> tuple[AbstractType, ...]:
        """Bound recursion whose arguments grow on every call.

        The widened arguments come from a frame further up the stack, so
        every frame between that one and the callee is provisional.
        """
        argtypes = match.argtypes
        previous = self.stack.find_method(match.method)
        if previous is None or previous.argtypes == argtypes:
            return argtypes
        cfg = self.config
        widened = tuple(
            widen(join(p, a), cfg.max_union_size, cfg.max_type_depth)
            for p, a in zip(previous.argtypes, argtypes)
        )
        if widened == argtypes:
            return argtypes
        again = match_method(match.method, widened)
        if again is None or again.argtypes == argtypes:
            return argtypes
        self.stack.mark_provisional_above(previous)
        return again.argtypes

    def _attach(self, frame: CallFrame) -> None:
        parent = self.stack.top
        if parent is not None:
            parent.add_child(frame)
        else:
            self.frames.append(frame)

    def _reuse(self, frame: CallFrame, cached: CachedResult) -> AbstractType:
        self._attach(frame)
        frame.start()
        frame.iterations = cached.iterations
        prefix = self.stack.snapshot() + (frame.info(),)
        self.detector.restore(cached.events, prefix)
        frame.finish(cached.return_type, errored=bool(cached.events))
        return cached.return_type

    def _infer(self, frame: CallFrame, key: CallKey) -> AbstractType:
        cfg = self.config
        self._attach(frame)
        self.stack.push(frame)
        frame.start()
        depth = len(self.stack)
        start = self.detector.checkpoint()
        try:
            result = BOTTOM
            for i in range(1, cfg.max_fixpoint_iterations + 1):
                frame.iterations = i
                frame.children.clear()
                checkpoint = self.detector.checkpoint()
                result = self._interpret_body(frame)
                if not frame.recursive or is_subtype(result, frame.estimate):
                    if frame.recursive:
                        result = frame.estimate
                    break
                estimate = join(frame.estimate, result)
                if i >= cfg.widen_after:
                    estimate = widen(estimate, cfg.max_union_size, cfg.max_type_depth)
                logger.debug("fixed point %s, iteration %d: %s -> %s",
                             frame.signature, i, frame.estimate, estimate)
                if i == cfg.max_fixpoint_iterations:
                    self._report(iteration_limit(frame.signature, cfg.max_fixpoint_iterations,
                                                 frame.location))
                    frame.estimate = result = TOP
                    break
                frame.estimate = estimate
                self.detector.rollback(checkpoint)
        finally:
            self.stack.pop()

        events = self.detector.since(start)
        frame.finish(result, errored=bool(events))
        if not frame.provisional:
            relative = tuple(dataclasses.replace(e, frames=e.frames[depth:]) for e in events)
            self.cache.put(key, CachedResult(result, relative, frame.iterations))
        return result

    def _interpret_body(self, frame: CallFrame) -> AbstractType:
        definition = frame.method.body
        scope = Scope(parent=self.global_scope)
        params = list(getattr(definition, "params", ()))
        for param, t in zip(params, frame.argtypes):
            scope.assign(param.name, t)
        vararg = getattr(definition, "vararg", None)
        if vararg is not None:
            rest = join_all(frame.argtypes[len(params):])
            element = common_supertype(rest.members()) if rest.members() else ANY
            scope.assign(vararg.name, concrete(VECTOR.instantiate((element,))))

        flow = _Flow()
        self._flows.append(flow)
        try:
            value = self._eval(definition.body, scope)
        finally:
            self._flows.pop()
        if flow.terminated:
            return flow.returns
        return join(flow.returns, value)
