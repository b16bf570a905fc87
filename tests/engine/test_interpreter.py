"""Abstract interpreter tests.

Programs are written as IR documents and run through a full profiling
session; each test checks the findings and inferred types of one
behaviour.
"""

import textwrap

import pytest

from typeprof.builtins import BOOL, FLOAT64, INT64, STRING
from typeprof.config import ProfilerConfig
from typeprof.detector import ErrorDetector
from typeprof.engines import AbstractInterpreter
from typeprof.errors import ErrorKind
from typeprof.frontend import build_environment, parse_program
from typeprof.session import ProfileSession
from typeprof.types import TOP, concrete, make_union


def run(doc, **config):
    program = parse_program(textwrap.dedent(doc), "test.yml")
    session = ProfileSession(ProfilerConfig(**config))
    report = session.profile_program(program)
    return report, session


FIB = """
methods:
  - name: fib
    params: [n]
    line: 1
    body:
      if: {call: "<=", args: [{name: n}, {lit: 2}], line: 2}
      then: {lit: 1}
      else:
        call: "+"
        line: 3
        args:
          - {call: fib, args: [{call: "-", args: [{name: n}, {lit: 1}]}]}
          - {call: fib, args: [{call: "-", args: [{name: n}, {lit: 2}]}]}
calls:
"""


# ===================================================================
# End-to-end scenarios
# ===================================================================

class TestScenarios:

    def test_recursive_call_with_wrong_argument_type(self):
        report, session = run(FIB + """
  - {call: fib, args: [{lit: 10}], line: 5}
  - {call: fib, args: [{lit: "text"}], line: 6}
""")
        assert report.total_errors == 1
        event = report.events[0]
        assert event.kind is ErrorKind.NO_MATCHING_METHOD
        assert event.message == "no matching method found `<=(::String, ::Int64)`"
        assert event.location.line == 2
        assert [f.signature for f in event.frames] == ["fib(::String)"]
        assert event.frames[0].location.line == 6

        assert session.roots[0].return_type == concrete(INT64)
        assert session.roots[1].return_type.is_bottom()

        root = report.tree[0]
        assert root.callee_signature == "fib(::String)"
        assert root.children[0].leaf_message == event.message

    def test_undefined_argument_is_reported_once(self):
        report, _ = run("""
methods:
  - name: f
    params: [x]
    body: {call: "+", args: [{name: x}, {lit: 1}]}
calls:
  - {call: f, args: [{name: undefined_var}], line: 4}
""")
        assert report.total_errors == 1
        event = report.events[0]
        assert event.kind is ErrorKind.UNDEFINED_BINDING
        assert event.message == "`undefined_var` is not defined"
        assert event.frames == ()

    def test_field_typo_three_frames_deep(self):
        report, _ = run("""
types:
  - {name: Point, fields: {x: Int64, y: Int64}}
methods:
  - name: inner
    params: ["p::Point"]
    body: {getfield: {name: p}, field: nmae, line: 3}
  - name: middle
    params: ["p::Point"]
    body: {call: inner, args: [{name: p}], line: 6}
  - name: outer
    params: ["p::Point"]
    body: {call: middle, args: [{name: p}], line: 9}
calls:
  - {call: outer, args: [{call: Point, args: [1, 2]}], line: 12}
""")
        assert report.total_errors == 1
        event = report.events[0]
        assert event.kind is ErrorKind.INVALID_FIELD_ACCESS
        assert event.message == "type Point has no field nmae"
        assert [(f.location.line, f.signature) for f in event.frames] == [
            (12, "outer(::Point)"), (9, "middle(::Point)"), (6, "inner(::Point)"),
        ]
        outer = report.tree[0]
        middle = outer.children[0]
        inner = middle.children[0]
        assert inner.callee_signature == "inner(::Point)"
        assert inner.children[0].is_leaf

    def test_failed_dispatch_makes_later_field_access_silent(self):
        report, _ = run("""
types:
  - {name: Point, fields: {x: Int64, y: Int64}}
methods:
  - name: inner
    params: ["p::Point"]
    body:
      block:
        - {assign: q, value: {call: "+", args: [{name: p}, 1]}, line: 3}
        - {getfield: {name: q}, field: nmae, line: 4}
  - name: middle
    params: ["p::Point"]
    body: {call: inner, args: [{name: p}], line: 7}
  - name: outer
    params: ["p::Point"]
    body: {call: middle, args: [{name: p}], line: 10}
calls:
  - {call: outer, args: [{call: Point, args: [1, 2]}], line: 13}
""")
        assert report.total_errors == 1
        event = report.events[0]
        assert event.kind is ErrorKind.NO_MATCHING_METHOD
        assert event.message == "no matching method found `+(::Point, ::Int64)`"
        assert event.location.line == 3
        assert [f.signature for f in event.frames] == [
            "outer(::Point)", "middle(::Point)", "inner(::Point)",
        ]

    def test_clean_program(self):
        report, session = run(FIB + """
  - {call: fib, args: [{lit: 30}], line: 5}
""")
        assert report.total_errors == 0
        assert report.tree == []
        assert session.roots[0].return_type == concrete(INT64)


# ===================================================================
# Recursion and caching
# ===================================================================

class TestFixedPoint:

    def test_iterations_independent_of_literal_magnitude(self):
        _, small = run(FIB + "  - {call: fib, args: [{lit: 10}], line: 5}\n")
        _, large = run(FIB + "  - {call: fib, args: [{lit: 1000}], line: 5}\n")
        assert small.roots[0].frames[0].iterations == large.roots[0].frames[0].iterations
        assert small.roots[0].frames[0].iterations == 2

    def test_mutual_recursion(self):
        _, session = run("""
methods:
  - name: iseven
    params: [n]
    body:
      if: {call: "==", args: [{name: n}, 0]}
      then: {lit: true}
      else: {call: isodd, args: [{call: "-", args: [{name: n}, 1]}]}
  - name: isodd
    params: [n]
    body:
      if: {call: "==", args: [{name: n}, 0]}
      then: {lit: false}
      else: {call: iseven, args: [{call: "-", args: [{name: n}, 1]}]}
calls:
  - {call: iseven, args: [10], line: 14}
""")
        assert session.roots[0].return_type == concrete(BOOL)

    def test_growing_arguments_terminate(self):
        report, _ = run("""
methods:
  - name: grow
    params: [v]
    body: {call: grow, args: [{vector: [{name: v}]}]}
calls:
  - {call: grow, args: [1], line: 4}
""")
        assert report.total_errors == 0

    def test_fixpoint_ceiling_reports_iteration_limit(self):
        report, session = run(FIB + "  - {call: fib, args: [{lit: 10}], line: 5}\n",
                              widen_after=1, max_fixpoint_iterations=1)
        kinds = [e.kind for e in report.events]
        assert kinds == [ErrorKind.ITERATION_LIMIT]
        assert report.events[0].message.startswith(
            "iteration limit (1) exceeded while inferring fib(::Int64)")
        assert session.roots[0].return_type is TOP

    def test_inference_budget(self):
        report, session = run("""
methods:
  - name: f
    params: [x]
    body: {call: g, args: [{name: x}]}
  - name: g
    params: [x]
    body: {name: x}
calls:
  - {call: f, args: [1], line: 7}
""", max_inferences=1)
        assert [e.kind for e in report.events] == [ErrorKind.ITERATION_LIMIT]
        assert session.roots[0].return_type is TOP

    def test_cached_findings_reattached_under_each_caller(self):
        report, _ = run("""
methods:
  - name: bad
    params: [x]
    body: {getfield: {name: x}, field: nope, line: 3}
  - name: wrapper
    params: [x]
    body: {call: bad, args: [{name: x}], line: 6}
calls:
  - {call: wrapper, args: [1], line: 8}
  - {call: bad, args: [2], line: 9}
""")
        assert report.total_errors == 2
        first, second = report.events
        assert [f.signature for f in first.frames] == ["wrapper(::Int64)", "bad(::Int64)"]
        assert [f.signature for f in second.frames] == ["bad(::Int64)"]
        assert second.frames[0].location.line == 9
        assert report.stats["hits"] >= 1

    def test_widened_recursion_does_not_leak_through_cache(self):
        methods = """
methods:
  - name: g
    params: [x]
    body:
      block:
        - {getfield: {name: x}, field: foo, line: 4}
        - {call: h, args: [{name: x}], line: 5}
  - name: h
    params: [x]
    body: {call: g, args: ["s"], line: 8}
calls:
"""

        def findings(report, root):
            return [(e.message, [f.signature for f in e.frames])
                    for e in report.events if e.root == root]

        alone, _ = run(methods + "  - {call: h, args: [1], line: 10}\n")
        after, _ = run(methods + "  - {call: g, args: [1], line: 10}\n"
                                 "  - {call: h, args: [1], line: 11}\n")
        assert findings(alone, 0) == [
            ("type String has no field foo", ["h(::Int64)", "g(::String)"]),
        ]
        assert findings(after, 1) == findings(alone, 0)


# ===================================================================
# Dispatch from the interpreter
# ===================================================================

UNION_SOURCE = """
methods:
  - name: pick
    params: ["c::Bool"]
    body:
      if: {name: c}
      then: 1
      else: "s"
  - name: onlyint
    params: ["x::Int64"]
    body: {name: x}
  - name: literal
    body:
      if: {lit: true}
      then: 1
      else: "s"
"""


class TestDispatch:

    def test_union_split_reports_uncovered_member(self):
        report, _ = run(UNION_SOURCE + """
calls:
  - {call: onlyint, args: [{call: pick, args: [true]}], line: 20}
""")
        assert report.total_errors == 1
        assert report.events[0].message == \
            "no matching method found `onlyint(::String)` (1/2 union split)"

    def test_union_return_type(self):
        _, session = run(UNION_SOURCE + """
calls:
  - {call: pick, args: [true], line: 20}
""")
        assert session.roots[0].return_type == make_union([INT64, STRING])

    def test_non_strict_prunes_literal_branch(self):
        strict, _ = run(UNION_SOURCE + """
calls:
  - {call: onlyint, args: [{call: literal}], line: 20}
""")
        relaxed, _ = run(UNION_SOURCE + """
calls:
  - {call: onlyint, args: [{call: literal}], line: 20}
""", explore_both_branches=False)
        assert strict.total_errors == 1
        assert relaxed.total_errors == 0

    AMBIGUOUS = """
types:
  - {name: Box, fields: {v: Any}}
methods:
  - name: amb
    params: ["x::Int64", "y"]
    body: 1
  - name: amb
    params: ["x", "y::Int64"]
    body: 2
"""

    def test_ambiguous_call(self):
        report, _ = run(self.AMBIGUOUS + """
calls:
  - {call: amb, args: [1, 2], line: 10}
""")
        assert report.total_errors == 1
        event = report.events[0]
        assert event.kind is ErrorKind.AMBIGUOUS
        assert event.message.startswith("ambiguous method call `amb(::Int64, ::Int64)`")

    def test_ambiguity_with_imprecise_argument_is_silent(self):
        report, session = run(self.AMBIGUOUS + """
calls:
  - call: amb
    line: 10
    args: [1, {getfield: {call: Box, args: [1]}, field: v}]
""")
        assert report.total_errors == 0
        assert session.roots[0].return_type is TOP


# ===================================================================
# Expressions
# ===================================================================

POINT = """
types:
  - {name: Shape, abstract: true}
  - {name: Point, supertype: Shape, fields: {x: Int64, y: Int64}}
"""


class TestExpressions:

    def test_constructor_arity(self):
        report, _ = run(POINT + """
calls:
  - {call: Point, args: [1], line: 5}
""")
        assert report.events[0].message == "no matching method found `Point(::Int64)`"

    def test_constructor_conversion_failure(self):
        report, _ = run(POINT + """
calls:
  - {call: Point, args: ["a", 2], line: 5}
""")
        event = report.events[0]
        assert event.kind is ErrorKind.CONVERSION_FAILURE
        assert event.message == \
            "cannot `convert` an object of type String to an object of type Int64"

    def test_constructor_converts_fields(self):
        report, session = run(POINT + """
calls:
  - {call: Point, args: [true, 2], line: 5}
""")
        assert report.total_errors == 0
        assert str(session.roots[0].return_type) == "Point"

    def test_field_access_on_union(self):
        report, _ = run(POINT + """
methods:
  - name: either
    params: ["c::Bool"]
    body:
      if: {name: c}
      then: {call: Point, args: [1, 2]}
      else: 3
calls:
  - {getfield: {call: either, args: [true]}, field: x, line: 12}
""")
        assert report.events[0].message == "type Int64 has no field x"

    def test_argument_narrowed_to_declared_subtype(self):
        report, session = run(POINT + """
methods:
  - name: getx
    params: ["s::Shape"]
    body: {getfield: {name: s}, field: x}
calls:
  - {call: getx, args: [{call: Point, args: [1, 2]}], line: 9}
""")
        assert report.total_errors == 0
        assert session.roots[0].return_type == concrete(INT64)

    def test_field_access_on_abstract_type_is_unknown(self):
        report, session = run(POINT + """
  - {name: Holder, fields: {s: Shape}}
calls:
  - line: 6
    getfield: {getfield: {call: Holder, args: [{call: Point, args: [1, 2]}]}, field: s}
    field: anything
""")
        assert report.total_errors == 0
        assert session.roots[0].return_type is TOP

    def test_non_boolean_condition(self):
        report, _ = run("""
calls:
  - {if: 1, then: 2, else: 3, line: 2}
""")
        event = report.events[0]
        assert event.kind is ErrorKind.CONVERSION_FAILURE
        assert event.message == "non-boolean (Int64) used in boolean context"

    def test_convert_expression(self):
        report, session = run("""
calls:
  - {convert: Float64, value: 1, line: 2}
""")
        assert report.total_errors == 0
        assert session.roots[0].return_type == concrete(FLOAT64)

    def test_unsupported_construct(self):
        report, session = run("""
calls:
  - {quote: x, line: 2}
""")
        event = report.events[0]
        assert event.kind is ErrorKind.UNSUPPORTED_CONSTRUCT
        assert event.message == "unsupported construct `quote`"
        assert session.roots[0].return_type.is_bottom()

    def test_statements_continue_after_error(self):
        report, session = run("""
methods:
  - name: f
    body:
      block:
        - {name: missing, line: 3}
        - {call: "+", args: ["a", 1], line: 4}
        - 5
calls:
  - {call: f, line: 8}
""")
        assert [e.kind for e in report.events] == [
            ErrorKind.UNDEFINED_BINDING, ErrorKind.NO_MATCHING_METHOD,
        ]
        assert session.roots[0].return_type == concrete(INT64)

    def test_early_return(self):
        _, session = run("""
methods:
  - name: f
    params: [x]
    body:
      block:
        - if: {call: ">", args: [{name: x}, 0]}
          then: {return: "pos"}
        - 1
calls:
  - {call: f, args: [3], line: 9}
""")
        assert session.roots[0].return_type == make_union([INT64, STRING])

    def test_while_loop_fixed_point(self):
        _, session = run("""
methods:
  - name: accumulate
    body:
      block:
        - {assign: s, value: 0}
        - {assign: i, value: 1}
        - while: {call: "<=", args: [{name: i}, 10]}
          body:
            block:
              - {assign: s, value: {call: "+", args: [{name: s}, 1.5]}}
              - {assign: i, value: {call: "+", args: [{name: i}, 1]}}
        - {name: s}
calls:
  - {call: accumulate, line: 14}
""")
        assert session.roots[0].return_type == make_union([FLOAT64, INT64])

    def test_vector_builtins(self):
        report, session = run("""
methods:
  - name: f
    params: [v]
    body: {call: push!, args: [{name: v}, "s"], line: 4}
calls:
  - {call: first, args: [{vector: [1, 2]}], line: 5}
  - {call: f, args: [{vector: [1, 2]}], line: 6}
""")
        assert session.roots[0].return_type == concrete(INT64)
        assert report.total_errors == 1
        assert report.events[0].message == \
            "no matching method found `push!(::Vector{Int64}, ::String)`"

    def test_globals(self):
        report, session = run("""
globals:
  limit: 10
  broken: {call: "+", args: [1, "x"], line: 2}
methods:
  - name: f
    body: {call: "*", args: [{name: limit}, 2]}
calls:
  - {call: f, line: 7}
""")
        assert session.roots[0].return_type == concrete(INT64)
        assert report.total_errors == 1
        assert report.events[0].root == -1


class TestInterpreterWiring:

    def test_findings_land_in_given_detector(self):
        program = parse_program(FIB + '  - {call: fib, args: ["text"], line: 5}\n', "test.yml")
        registry, table = build_environment(program)
        detector = ErrorDetector(root=3)
        interp = AbstractInterpreter(table, registry, detector=detector)
        assert interp.detector is detector
        interp.infer_toplevel(program.calls[0])
        assert len(detector) == 1
        assert detector.events[0].root == 3
        assert detector.events[0].kind is ErrorKind.NO_MATCHING_METHOD


@pytest.mark.parametrize("parallel", [False, True])
def test_profile_is_idempotent(parallel):
    doc = FIB + """
  - {call: fib, args: [{lit: "a"}], line: 5}
  - {call: fib, args: [{lit: 1.5}], line: 6}
  - {call: fib, args: [{lit: 3}], line: 7}
"""
    first, _ = run(doc, parallel=parallel)
    second, _ = run(doc, parallel=parallel)
    assert [n.to_dict() for n in first.tree] == [n.to_dict() for n in second.tree]
    assert [e.to_dict() for e in first.events] == [e.to_dict() for e in second.events]
